from .common import ErrorEnvelope, MessageResponse, SuccessEnvelope, success  # noqa: F401
from .query import Page, QueryOptions, SortSpec  # noqa: F401
