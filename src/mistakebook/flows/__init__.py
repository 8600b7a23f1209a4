from .review_session import ReviewSessionFlow

__all__ = ["ReviewSessionFlow"]
