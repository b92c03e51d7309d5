"""Example n8n Code node: attach knowledge source ids to podcast episodes.

Paste into a Python Code node ("Run Once for All Items") after an
"Ingestion Sources" node and return ``await run(_input.all(), _)``.
"""

from n8n_code_utils import BatchOptions, RetryPolicy, node_accessors, process_batch


def build_episode(item, payload, index, ingestion_sources):
    """Build the insert row for one episode."""
    if not payload.get("guid"):
        raise ValueError(f"Missing guid for episode at index {index}")

    source_id = (ingestion_sources or {}).get("knowledgeSourceId")
    if source_id is None:
        raise ValueError(f"No knowledge source for episode '{payload.get('title')}'")

    return {
        "knowledgeSourceId": source_id,
        "guid": payload["guid"],
        "title": payload.get("title", "").strip(),
    }


async def run(items, dollar):
    options = BatchOptions(
        settle_delay=0.15,
        accessor_retry=RetryPolicy.n8n_race_workaround(),
    )
    result = await process_batch(
        items,
        build_episode,
        node_accessors(dollar, ["Ingestion Sources"]),
        options,
    )
    return result.items()
