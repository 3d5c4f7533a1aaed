"""Reading the persisted analysis result for downstream screens."""

import copy
from typing import Any, Dict, Optional

from gent_client.config import logger
from gent_client.core import storage_ops
from gent_client.core.backend import BackendClient
from gent_client.core.errors import BackendError
from gent_client.core.preview_cache import outfit_id
from gent_client.core.storage_ops import KeyValueStore


async def read_local_result(store: KeyValueStore) -> Optional[Dict[str, Any]]:
    """
    The stored result, or None when absent or structurally unusable.

    The analysis-complete flag is written last, so a blob without it is
    left over from a failed attempt and is ignored.
    """
    if not await store.get_flag(storage_ops.KEY_HAS_COMPLETED_ANALYSIS):
        return None

    result = await store.get_json(storage_ops.KEY_ANALYSIS_RESULT)
    if result is None:
        return None
    if not isinstance(result.get("identity_snapshot_v1"), dict):
        logger.warning("Stored analysis result has no identity snapshot; ignoring it")
        return None
    return result


async def load_analysis_result(
    store: KeyValueStore,
    backend: BackendClient,
    phone: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Load the analysis result for display.

    The local blob wins. When it is missing but the analysis-complete flag is
    set, the backend's stored analysis is fetched and cached locally.
    """
    if not await store.get_flag(storage_ops.KEY_HAS_COMPLETED_ANALYSIS):
        return None

    local = await read_local_result(store)
    if local:
        return local

    phone = phone or await store.get_item(storage_ops.KEY_PHONE)
    if not phone:
        return None

    try:
        data = await backend.fetch_analysis(phone)
    except BackendError as e:
        logger.info(f"Remote analysis unavailable: {e}")
        return None

    identity = data.get("identity_snapshot_v1")
    if not data.get("has_analysis") or not isinstance(identity, dict):
        return None

    result = {
        "identity_snapshot_v1": identity,
        "outfit_catalog_v1": data.get("outfit_catalog_v1"),
    }
    try:
        await store.set_json(storage_ops.KEY_ANALYSIS_RESULT, result)
    except Exception as e:
        logger.warning(f"Failed to cache remote analysis result: {e}")
    return result


def with_outfit_ids(result: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``result`` where every outfit carries a stable ``outfit_id``."""
    result = copy.deepcopy(result)
    catalog = result.get("outfit_catalog_v1")
    if not isinstance(catalog, dict):
        return result

    for context in catalog.get("contexts") or []:
        if not isinstance(context, dict):
            continue
        name = str(context.get("context_name", ""))
        for index, outfit in enumerate(context.get("outfits") or []):
            if isinstance(outfit, dict) and not outfit.get("outfit_id"):
                outfit["outfit_id"] = outfit_id(name, index)
    return result
