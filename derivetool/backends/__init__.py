"""バックエンド層 - GenerationPlan→Python ソース生成

生成計画と型定義から Python コードを生成する純関数群。
"""

from . import py_code

__all__ = ["py_code"]
