from dataclasses import replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from gitdex.search.store import ItemRecord
from gitdex.search.types import ItemType


def _parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return dt if dt.tzinfo else dt.replace(tzinfo=UTC)
    raise ValueError(f"Cannot parse datetime from {type(value)}")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class IssueState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class PullRequestState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class User(_FrozenModel):
    login: str
    id: int | None = None


class Label(_FrozenModel):
    name: str
    color: str | None = None


class _Timestamped(_FrozenModel):
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _parse_timestamps(cls, v: Any) -> datetime | None:
        return _parse_datetime(v)


class Repository(_Timestamped):
    id: int
    owner: str
    name: str
    full_name: str
    description: str | None = None
    url: str = ""
    language: str | None = None
    topics: list[str] = []
    stargazers_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0
    fork: bool = False
    archived: bool = False

    @property
    def item_type(self) -> ItemType:
        return ItemType.REPOSITORY

    @property
    def item_id(self) -> str:
        return f"{self.item_type}:{self.id}"

    def embedding_text(self) -> str:
        return "\n".join(p for p in (self.full_name, self.description, " ".join(self.topics)) if p)

    def to_record(self) -> ItemRecord:
        return ItemRecord(
            item_id=self.item_id,
            item_type=self.item_type,
            title=self.full_name,
            body=self.description or "",
            labels=", ".join(self.topics),
            author=self.owner,
            repository=self.full_name,
            language=self.language,
            stars=self.stargazers_count,
            forks=self.forks_count,
            archived=self.archived,
            created_at=_iso(self.created_at),
            updated_at=_iso(self.updated_at),
            data=self.model_dump_json(),
        )


class Issue(_Timestamped):
    id: int
    repository: str
    number: int
    title: str
    body: str | None = None
    state: IssueState = IssueState.OPEN
    user: User
    assignees: list[User] = []
    labels: list[Label] = []
    milestone: str | None = None
    closed_at: datetime | None = None

    @field_validator("closed_at", mode="before")
    @classmethod
    def _parse_closed_at(cls, v: Any) -> datetime | None:
        return _parse_datetime(v)

    @property
    def item_type(self) -> ItemType:
        return ItemType.ISSUE

    @property
    def item_id(self) -> str:
        return f"{self.item_type}:{self.id}"

    def embedding_text(self) -> str:
        return f"{self.title}\n{self.body or ''}".strip()

    def to_record(self) -> ItemRecord:
        return ItemRecord(
            item_id=self.item_id,
            item_type=self.item_type,
            title=self.title,
            body=self.body or "",
            labels=", ".join(label.name for label in self.labels),
            author=self.user.login,
            repository=self.repository,
            number=self.number,
            state=str(self.state),
            assignees=", ".join(a.login for a in self.assignees),
            milestone=self.milestone,
            created_at=_iso(self.created_at),
            updated_at=_iso(self.updated_at),
            closed_at=_iso(self.closed_at),
            data=self.model_dump_json(),
        )


class PullRequest(Issue):
    state: PullRequestState = PullRequestState.OPEN
    merged_at: datetime | None = None
    head_ref: str | None = None
    base_ref: str | None = None
    draft: bool = False

    @field_validator("merged_at", mode="before")
    @classmethod
    def _parse_merged_at(cls, v: Any) -> datetime | None:
        return _parse_datetime(v)

    @property
    def item_type(self) -> ItemType:
        return ItemType.PULL_REQUEST

    def to_record(self) -> ItemRecord:
        return replace(super().to_record(), merged_at=_iso(self.merged_at))


type Item = Repository | Issue | PullRequest

_MODELS: dict[ItemType, type[BaseModel]] = {
    ItemType.REPOSITORY: Repository,
    ItemType.ISSUE: Issue,
    ItemType.PULL_REQUEST: PullRequest,
}


def load_item(item_type: ItemType, data: str) -> Item:
    return _MODELS[item_type].model_validate_json(data)
