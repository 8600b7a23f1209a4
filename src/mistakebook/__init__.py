"""Mistakebook backend: a notebook of wrong answers with spaced-repetition review.

撮影した問題ページから切り出した錯題を保存し、間隔反復で復習を出題する。
"""

__version__ = "0.1.0"
