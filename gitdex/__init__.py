import litellm

__version__ = "0.1.0"


litellm.drop_params = True
litellm.suppress_debug_info = True
