"""Import pipeline: dedup, rules, AI fallback, rule promotion, single write."""

import asyncio
from collections.abc import Sequence
from typing import Protocol

from ledgerlink.config import settings
from ledgerlink.logger import async_log_timing, get_logger, log_exception
from ledgerlink.schemas.classification import AIClassification, ImportResult
from ledgerlink.schemas.duplicates import DuplicateDetectionConfig
from ledgerlink.schemas.transaction import UNCATEGORIZED, Transaction
from ledgerlink.services.deduplication import DuplicateDetector
from ledgerlink.services.openrouter import ClassifierError
from ledgerlink.services.rule_generator import RuleAutoGenerator
from ledgerlink.services.rules import RuleEngine
from ledgerlink.services.transactions import PersistenceError, TransactionStore

logger = get_logger(__name__)


class AIClassifier(Protocol):
    async def classify_batch(self, records: Sequence[Transaction]) -> list[AIClassification]: ...


def uncategorized(transaction: Transaction) -> Transaction:
    return transaction.model_copy(
        update={
            "category": UNCATEGORIZED,
            "subcategory": None,
            "confidence": None,
            "reasoning": None,
            "ai_metadata": None,
        }
    )


class ImportService:
    """Classifies and persists a normalized batch of imported records."""

    def __init__(
        self,
        store: TransactionStore,
        engine: RuleEngine,
        classifier: AIClassifier | None = None,
        *,
        generator: RuleAutoGenerator | None = None,
        chunk_size: int | None = None,
        enable_auto_rules: bool | None = None,
        duplicate_config: DuplicateDetectionConfig | None = None,
    ):
        self.store = store
        self.engine = engine
        self.classifier = classifier
        self.generator = generator or RuleAutoGenerator(engine, store)
        self.chunk_size = chunk_size or settings.classification_chunk_size
        self.enable_auto_rules = (
            settings.enable_auto_rules if enable_auto_rules is None else enable_auto_rules
        )
        self.detector = DuplicateDetector(duplicate_config)

    async def import_records(
        self,
        records: Sequence[Transaction],
        *,
        skip_duplicates: bool = True,
        cancel_event: asyncio.Event | None = None,
    ) -> ImportResult:
        """Run the import flow and persist the result with one write.

        ``cancel_event`` is checked before each AI chunk. On cancellation the
        records classified so far are persisted and the rest are returned in
        ``pending``.
        """
        result = ImportResult()
        records = list(records)

        async with async_log_timing("import_records", logger=logger, size=len(records)) as ctx:
            if skip_duplicates and records:
                existing = await self.store.get_all_transactions()
                detection = self.detector.detect(existing, records)
                result.duplicates = detection.duplicates
                records = detection.unique_transactions

            first_pass = self.engine.apply_rules_to_batch(records)
            classified = {m.transaction.id: m.transaction for m in first_pass.matched}
            result.rule_matched = len(first_pass.matched)

            unmatched = first_pass.unmatched
            for start in range(0, len(unmatched), self.chunk_size):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    result.pending = unmatched[start:]
                    logger.info("Import cancelled", pending=len(result.pending))
                    break
                chunk = unmatched[start : start + self.chunk_size]
                for transaction in await self._classify_chunk(chunk, result):
                    classified[transaction.id] = transaction

            imported = [classified[r.id] for r in records if r.id in classified]
            result.imported = await self.store.add_transactions(imported)

            ctx.update(
                imported=len(result.imported),
                duplicates=len(result.duplicates),
                rule_matched=result.rule_matched,
                ai_classified=result.ai_classified,
                fallback=result.fallback,
                rules_created=result.rules_created,
            )
        return result

    async def _classify_chunk(
        self, chunk: list[Transaction], result: ImportResult
    ) -> list[Transaction]:
        # Rules created from earlier chunks may already cover this one.
        second_pass = self.engine.apply_rules_to_batch(chunk)
        output = [m.transaction for m in second_pass.matched]
        result.rule_matched += len(second_pass.matched)
        pending = second_pass.unmatched
        if not pending:
            return output

        if self.classifier is None:
            result.fallback += len(pending)
            return output + [uncategorized(t) for t in pending]

        try:
            verdicts = await self.classifier.classify_batch(pending)
        except Exception as e:  # noqa: BLE001 - any classifier failure falls back locally
            log_exception(
                logger,
                e,
                "AI classification failed, falling back to Uncategorized",
                level="warning",
                include_traceback=False,
                chunk_size=len(pending),
                retryable=isinstance(e, ClassifierError) and e.retryable,
            )
            result.fallback += len(pending)
            return output + [uncategorized(t) for t in pending]

        by_id = {verdict.transaction_id: verdict for verdict in verdicts}
        for transaction in pending:
            verdict = by_id.get(transaction.id)
            if verdict is None:
                result.fallback += 1
                output.append(uncategorized(transaction))
                continue

            output.append(
                transaction.model_copy(
                    update={
                        "category": verdict.category,
                        "subcategory": verdict.subcategory,
                        "confidence": verdict.confidence,
                        "reasoning": verdict.reasoning,
                        "ai_metadata": {
                            "source": "ai",
                            "classifier": type(self.classifier).__name__,
                        },
                    }
                )
            )
            result.ai_classified += 1
            if self.enable_auto_rules:
                await self._promote(transaction, verdict, result)
        return output

    async def _promote(
        self, transaction: Transaction, verdict: AIClassification, result: ImportResult
    ) -> None:
        if self.generator.find_rule(transaction.account, transaction.description) is not None:
            return
        try:
            rule = await self.generator.create_auto_rule_from_ai(
                transaction.account, transaction.description, verdict
            )
        except PersistenceError as e:
            log_exception(logger, e, "Auto rule could not be saved", transaction_id=transaction.id)
            return
        if rule is not None:
            result.rules_created += 1
