"""
Billing Export Table Resolver

The Cloud Billing export lands wherever the account owner pointed it, so the
table name is not derivable from the account id alone. Candidates come from an
ordered, configured template list; the first one whose probe succeeds is adopted
for the rest of the run and probing stops there.
"""

from typing import Any, Awaitable, Callable, List, Optional, Sequence
import structlog

from finops.shared.core.exceptions import ConfigurationError

logger = structlog.get_logger()


def normalize_account_id(billing_account_id: str) -> str:
    """012345-ABCDEF-678901 -> 012345_ABCDEF_678901 (export table naming)."""
    return billing_account_id.replace("-", "_")


def candidate_tables(
    billing_account_id: str,
    templates: Sequence[str],
    query_project: str
) -> List[str]:
    """Expand the configured templates for one billing account, preserving priority order."""
    account_id = normalize_account_id(billing_account_id)
    try:
        return [
            template.format(query_project=query_project, account_id=account_id)
            for template in templates
        ]
    except (KeyError, IndexError) as e:
        raise ConfigurationError(
            f"Billing export template uses an unknown placeholder: {e}",
            details={"templates": list(templates)}
        ) from e


async def resolve_table(
    candidates: Sequence[str],
    probe: Callable[[str], Awaitable[Any]]
) -> Optional[str]:
    """
    Return the first candidate whose probe completes without raising.

    ``probe`` is awaited at most once per candidate and never again after a hit.
    None means every candidate failed.
    """
    for table in candidates:
        try:
            await probe(table)
        except Exception as e:
            logger.debug("billing_table_probe_failed", table=table, error=str(e))
            continue
        logger.info("billing_table_resolved", table=table)
        return table

    logger.warning("billing_table_unresolved", candidates=len(candidates))
    return None


def probe_query(table: str) -> str:
    return f"/* finops:probe */ SELECT 1 AS ok FROM `{table}` LIMIT 1"  # nosec: B608
