"""Synonym-based query expansion."""

from __future__ import annotations

import logging

from sift.text.normalizer import preprocess, tokenize

logger = logging.getLogger(__name__)

# Minimum keyword length (exclusive) for partial key matches, per language.
_PARTIAL_MIN_LEN: dict[str, int] = {"ja": 1, "en": 2}

DEFAULT_SYNONYMS: dict[str, dict[str, list[str]]] = {
    "ja": {
        "予算": ["費用", "コスト", "料金", "上限額"],
        "変更": ["修正", "編集", "更新", "切り替え"],
        "削除": ["消去", "取り消し", "解除"],
        "追加": ["登録", "作成", "新規"],
        "設定": ["構成", "セットアップ", "オプション"],
        "請求": ["支払い", "課金", "料金", "インボイス"],
        "支払い": ["決済", "請求", "入金"],
        "アカウント": ["口座", "ユーザー", "アカウント情報"],
        "広告": ["キャンペーン", "プロモーション", "クリエイティブ"],
        "キャンペーン": ["広告", "施策"],
        "エラー": ["不具合", "問題", "障害", "失敗"],
        "ログイン": ["サインイン", "認証"],
        "パスワード": ["暗証番号", "認証情報"],
        "停止": ["一時停止", "中止", "オフ"],
        "開始": ["再開", "スタート", "オン"],
        "確認": ["チェック", "検証", "照会"],
        "レポート": ["報告", "集計", "分析"],
        "方法": ["手順", "やり方", "仕方"],
        "表示": ["掲載", "配信", "インプレッション"],
        "審査": ["承認", "レビュー", "ポリシー"],
    },
    "en": {
        "budget": ["cost", "spend", "spending limit", "price"],
        "change": ["modify", "edit", "update", "adjust"],
        "delete": ["remove", "erase", "cancel"],
        "add": ["create", "register", "new"],
        "setting": ["configuration", "option", "preference"],
        "settings": ["configuration", "options", "preferences"],
        "billing": ["payment", "invoice", "charge"],
        "payment": ["billing", "pay", "transaction"],
        "account": ["profile", "user"],
        "campaign": ["ad", "promotion"],
        "error": ["issue", "problem", "failure", "bug"],
        "login": ["sign in", "log in", "authentication"],
        "password": ["credentials", "passcode"],
        "pause": ["stop", "suspend"],
        "start": ["resume", "begin", "launch"],
        "report": ["analytics", "statistics", "summary"],
        "approval": ["review", "policy"],
    },
}


class QueryExpander:
    """Expand queries with synonyms from a static per-language table.

    Args:
        synonyms: Per-language tables merged over DEFAULT_SYNONYMS.
    """

    def __init__(self, synonyms: dict[str, dict[str, list[str]]] | None = None) -> None:
        self._tables: dict[str, dict[str, list[str]]] = {
            lang: {k: list(v) for k, v in table.items()}
            for lang, table in DEFAULT_SYNONYMS.items()
        }
        for lang, table in (synonyms or {}).items():
            for key, values in table.items():
                self.add_synonyms(lang, key, values)

    def add_synonyms(self, language: str, key: str, synonyms: list[str]) -> None:
        """Add *synonyms* for *key* in *language* (merged with existing entries)."""
        table = self._tables.setdefault(language, {})
        existing = table.setdefault(key.lower(), [])
        for s in synonyms:
            if s not in existing:
                existing.append(s)

    def expand(self, query: str, language: str) -> list[str]:
        """Return synonym terms for the keywords in *query*.

        Exact table hits add that key's synonyms. A keyword that is a substring
        of a key (or contains one) also adds that key's synonyms when it is
        longer than 1 character (ja) / 2 characters (en). Result order is not
        significant.
        """
        table = self._tables.get(language) or {}
        if not table or not query:
            return []

        keywords = [k.lower() for k in tokenize(preprocess(query, language), language) if k.strip()]
        min_len = _PARTIAL_MIN_LEN.get(language, 2)

        expansions: list[str] = []
        seen: set[str] = set(keywords)

        def _add(terms: list[str]) -> None:
            for term in terms:
                if term not in seen:
                    seen.add(term)
                    expansions.append(term)

        for keyword in keywords:
            if keyword in table:
                _add(table[keyword])
            if len(keyword) <= min_len:
                continue
            for key, synonyms in table.items():
                if key != keyword and (keyword in key or key in keyword):
                    _add(synonyms)

        logger.debug("Expanded %r (%s) → %s", query, language, expansions)
        return expansions
