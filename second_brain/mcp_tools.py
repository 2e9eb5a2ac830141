"""
MCP tool handlers module.

Contains all FastMCP tool definitions that wrap the SecondBrain operations.
"""

from .models import Result


def jsonify_result(res: Result) -> dict:
    """
    Convert Result dataclass to JSON-serializable dict.

    A search with an empty query keeps ``data`` as ``None`` so callers can
    tell "no filter" apart from "no matches".
    """
    out = {"success": res.success}
    if res.reason is not None:
        out["reason"] = res.reason
    out["data"] = [dict(item) for item in res.data] if res.data is not None else None
    return out


def _split_csv(value: str):
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def register_tools(mcp, brain):
    """
    Register all MCP tools with the FastMCP instance.

    Args:
        mcp: FastMCP instance
        brain: SecondBrain instance
    """

    @mcp.tool
    def remember(content: str, memory_type: str = None) -> dict:
        """
        Save a new memory: a note, a thought, or a link.

        The memory is analyzed automatically (summary, topics, mood, colors,
        collection, importance), embedded for semantic search, and linked to
        related memories.

        Args:
        - content (str): Note text or an http(s) URL.
        - memory_type (str, optional): "note" or "link". Inferred when omitted.

        Returns:
            dict: success, reason (on failure), data with the stored memory
            including its related_memory_ids.
        """
        return jsonify_result(brain.remember(content, memory_type=memory_type))

    @mcp.tool
    def remember_file(path: str, note: str = "") -> dict:
        """
        Save an image or PDF from a local file path as a memory.

        Args:
        - path (str): Path to an image (png, jpg, ...) or a PDF.
        - note (str, optional): Text to store alongside the file.
        """
        return jsonify_result(brain.remember_file(path, note=note))

    @mcp.tool
    def search_memories(query: str) -> dict:
        """
        Search memories with hybrid semantic + keyword ranking.

        Queries under three characters use keyword matching only. Each result
        carries a score and a match_type ("hybrid", "keyword" or "fallback").

        Args:
        - query (str): Free-text query, e.g. "design inspiration" or "Red".
        """
        return jsonify_result(brain.search(query))

    @mcp.tool
    def resurface_memories(count: int = 5) -> dict:
        """
        Bring back important memories the user has not seen in a while.

        When to use:
        - "Show me something I saved a while ago", "what should I revisit?"

        Args:
        - count (int, optional): How many memories to resurface (default 5).
        """
        return jsonify_result(brain.resurface(count))

    @mcp.tool
    def get_insights() -> dict:
        """
        Recurring topics across saved memories and important memories that
        are overdue for a revisit.
        """
        return jsonify_result(brain.insights())

    @mcp.tool
    def get_related_memories(memory_id: str) -> dict:
        """
        List the memories linked to a memory.

        Args:
        - memory_id (str): Id of the memory.
        """
        return jsonify_result(brain.related(memory_id))

    @mcp.tool
    def get_recent_memories(limit: int = 20) -> dict:
        """
        Retrieve the most recently saved memories, newest first.

        Args:
        - limit (int, optional): Max results to return (default 20).
        """
        return jsonify_result(brain.get_recent(limit))

    @mcp.tool
    def list_collections() -> dict:
        """List the automatically derived memory collections, newest first."""
        return jsonify_result(brain.list_collections())

    @mcp.tool
    def get_collection_memories(name: str) -> dict:
        """
        Retrieve every memory in a collection.

        Args:
        - name (str): Collection name, e.g. "Travel Ideas" or "General".
        """
        return jsonify_result(brain.get_collection_memories(name))

    @mcp.tool
    def update_memory(
        memory_id: str,
        content: str = None,
        summary: str = None,
        topics: str = None,
        mood: str = None,
        collection: str = None,
        importance: float = None,
    ) -> dict:
        """
        Edit an existing memory by its id.

        Args:
        - memory_id (str): Id of the memory to edit.
        - content (str, optional): New content.
        - summary (str, optional): New summary.
        - topics (str, optional): Comma-separated topics, replacing the current ones.
        - mood (str, optional): Comma-separated mood tags, replacing the current ones.
        - collection (str, optional): New collection name.
        - importance (float, optional): 0.0 to 1.0.
        """
        res = brain.update_memory(
            memory_id,
            content=content,
            summary=summary,
            topics=_split_csv(topics),
            mood=_split_csv(mood),
            collection=collection,
            importance=importance,
        )
        return jsonify_result(res)

    @mcp.tool
    def delete_memory(memory_id: str) -> dict:
        """
        Permanently delete a memory by its id.

        Args:
        - memory_id (str): Id of the memory to delete.
        """
        return jsonify_result(brain.delete_memory(memory_id))

    @mcp.tool
    def get_memory_stats() -> dict:
        """Totals, type breakdown, collections, average importance and storage size."""
        return jsonify_result(brain.get_statistics())

    @mcp.tool
    def create_backup() -> dict:
        """
        Create a complete backup right now.
        Only use when directly asked - automatic backups happen regularly.
        """
        return jsonify_result(brain.create_backup())

    @mcp.tool
    def rebuild_vectors() -> dict:
        """
        Re-embed every memory with the configured embedding model.
        Use after switching models or if semantic search stops working.
        """
        return jsonify_result(brain.rebuild_vector_index())
