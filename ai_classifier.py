from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import Settings, get_settings
from schemas import Bucket, MainCategory, StagedTransaction, SubCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Suggestion:
    bucket_id: Optional[str] = None
    category_main_id: Optional[str] = None
    category_sub_id: Optional[str] = None


@dataclass(frozen=True)
class ClassificationUniverse:
    buckets: Sequence[Bucket] = ()
    main_categories: Sequence[MainCategory] = ()
    sub_categories: Sequence[SubCategory] = ()

    @property
    def bucket_ids(self) -> set[str]:
        return {b.id for b in self.buckets}

    @property
    def main_ids(self) -> set[str]:
        return {c.id for c in self.main_categories}

    @property
    def sub_parent(self) -> dict[str, str]:
        return {s.id: s.main_category_id for s in self.sub_categories}


class Classifier(Protocol):
    def suggest(
        self, batch: Sequence[StagedTransaction], universe: ClassificationUniverse
    ) -> dict[str, Optional[Suggestion]]: ...


class NullClassifier:
    def suggest(
        self, batch: Sequence[StagedTransaction], universe: ClassificationUniverse
    ) -> dict[str, Optional[Suggestion]]:
        return {}


SYSTEM_PROMPT = (
    "You match bank transactions to a household budget. For every transaction "
    "pick either a bucket (money moved to a budget post) or a main category and "
    "sub category (consumption). Answer with a JSON object keyed by transaction "
    'id. Each value is null or an object with "bucketId", "mainCatId" and '
    '"subCatId". Use null when no reasonable guess exists.'
)


def build_prompt(
    batch: Sequence[StagedTransaction], universe: ClassificationUniverse
) -> str:
    lines = ["BUCKETS:"]
    lines += [f'- id "{b.id}": {b.name}' for b in universe.buckets]
    lines.append("CATEGORIES:")
    subs_by_main: dict[str, list[SubCategory]] = {}
    for sub in universe.sub_categories:
        subs_by_main.setdefault(sub.main_category_id, []).append(sub)
    for main in universe.main_categories:
        lines.append(f'- id "{main.id}": {main.name}')
        lines += [
            f'  - sub id "{s.id}": {s.name}' for s in subs_by_main.get(main.id, [])
        ]
    lines.append("TRANSACTIONS:")
    lines += [
        f'- id "{t.id}": "{t.description}" amount {t.amount}' for t in batch
    ]
    return "\n".join(lines)


def parse_suggestions(payload: object) -> dict[str, Optional[Suggestion]]:
    """Lenient reading of the classifier answer; unknown shapes are dropped."""
    if not isinstance(payload, dict):
        return {}
    result: dict[str, Optional[Suggestion]] = {}
    for txn_id, value in payload.items():
        if value is None:
            result[str(txn_id)] = None
        elif isinstance(value, str):
            result[str(txn_id)] = Suggestion(bucket_id=value)
        elif isinstance(value, dict):
            result[str(txn_id)] = Suggestion(
                bucket_id=value.get("bucketId") or value.get("bucket_id"),
                category_main_id=value.get("mainCatId")
                or value.get("category_main_id"),
                category_sub_id=value.get("subCatId") or value.get("category_sub_id"),
            )
    return result


class HttpClassifier:
    """OpenAI-compatible chat completions endpoint returning a JSON object."""

    def __init__(self, url: str, api_key: str, model: str, timeout: float) -> None:
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpClassifier:
        return cls(
            url=settings.ai_url,
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            timeout=settings.ai_timeout_secs,
        )

    def suggest(
        self, batch: Sequence[StagedTransaction], universe: ClassificationUniverse
    ) -> dict[str, Optional[Suggestion]]:
        if not batch:
            return {}
        body = {
            "model": self.model,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(batch, universe)},
            ],
        }
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        req = Request(
            self.url,
            data=json.dumps(body).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise RuntimeError("Failed to reach classifier") from exc

        try:
            content = payload["choices"][0]["message"]["content"]
            answer = json.loads(content)
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            raise RuntimeError("Unexpected classifier response") from exc
        return parse_suggestions(answer)


def safe_suggest(
    classifier: Classifier,
    batch: Sequence[StagedTransaction],
    universe: ClassificationUniverse,
) -> dict[str, Optional[Suggestion]]:
    """Classifier failures are not errors for the import; they mean no suggestions."""
    try:
        return dict(classifier.suggest(batch, universe) or {})
    except Exception as exc:
        logger.warning(f"ai_classifier_failed: batch={len(batch)} error={exc}")
        return {}


def build_classifier(settings: Optional[Settings] = None) -> Classifier:
    settings = settings or get_settings()
    if settings.ai_enabled:
        return HttpClassifier.from_settings(settings)
    return NullClassifier()
