"""Agent tool implementations for SiteWatch Agent."""

import asyncio
import json
from datetime import datetime

from langchain_core.tools import BaseTool, tool

from sitewatch_agent.checker import (
    CheckOrchestrator,
    FetchFunc,
    add_resource,
    check_page_for_update,
)
from sitewatch_agent.fetcher import FetchError, InvalidUrlError, NetworkError
from sitewatch_agent.fingerprint import change_summary
from sitewatch_agent.models import (
    DEFAULT_CATEGORY,
    TITLE_LIMIT,
    Session,
    TrackedResource,
    truncate,
    utcnow,
)
from sitewatch_agent.store import AdapterError, ResourceStore


def build_tools(
    store: ResourceStore,
    orchestrator: CheckOrchestrator,
    session: Session,
    fetch_func: FetchFunc | None = None,
) -> list[BaseTool]:
    """Create the agent tools bound to one store, orchestrator and session."""

    def resolve(identifier: str) -> TrackedResource | dict:
        """Find exactly one resource, or return an error payload."""
        matches = store.find_by_identifier(session, identifier)
        if not matches:
            return _error(f"No website found matching '{identifier}'")
        if len(matches) > 1:
            exact = [r for r in matches if r.url == identifier]
            if len(exact) != 1:
                return {
                    "status": "error",
                    "message": "Multiple websites match. Please be more specific.",
                    "matches": [r.title for r in matches],
                }
            matches = exact
        return matches[0]

    @tool
    def add_website(url: str, category: str = DEFAULT_CATEGORY) -> str:
        """Start tracking a website or RSS/Atom feed by URL.

        Args:
            url: The website or feed URL. https:// is assumed when missing.
            category: Optional category to file the website under.
        """
        try:
            resource = asyncio.run(
                add_resource(store, session, url, category=category, fetch_func=fetch_func)
            )
        except InvalidUrlError as e:
            return json.dumps(_error(str(e)))
        except (FetchError, NetworkError) as e:
            return json.dumps(_error(f"Could not fetch website details: {e}"))
        except AdapterError as e:
            return json.dumps(_error(f"Error adding website: {e}"))

        return json.dumps({
            "status": "added",
            "website": {
                "id": resource.id,
                "title": resource.title,
                "url": resource.url,
                "category": resource.category,
                "is_feed": resource.is_feed,
                "feed_entries": [e.title for e in resource.feed_entries],
            },
        })

    @tool
    def list_websites(
        query: str = "",
        category: str = "",
        changed_only: bool = False,
        limit: int = 20,
    ) -> str:
        """List tracked websites, most recently changed first.

        Args:
            query: Optional text to match in title, description, URL or content.
            category: Optional category filter.
            changed_only: If true, only list websites with detected changes.
            limit: Maximum number of websites to return (default 20).
        """
        try:
            all_resources = store.list(session)
        except AdapterError as e:
            return json.dumps(_error(str(e)))

        resources = all_resources

        needle = query.lower().strip()
        if needle:
            resources = [
                r for r in resources
                if needle in r.title.lower()
                or needle in r.description.lower()
                or needle in r.url.lower()
                or needle in r.main_content.lower()
            ]
        if category:
            resources = [r for r in resources if r.category.lower() == category.lower()]
        if changed_only:
            resources = [r for r in resources if r.changed]

        return json.dumps({
            "websites": [_summarize(r) for r in resources[:limit]],
            "total": len(resources),
            "has_more": len(resources) > limit,
            "categories": sorted({r.category for r in all_resources}),
        })

    @tool
    def check_for_updates() -> str:
        """Check every tracked website for content changes now."""
        try:
            summary = asyncio.run(orchestrator.run(session))
        except AdapterError as e:
            return json.dumps(_error(str(e)))

        if summary is None:
            return json.dumps(_error("A check is already in progress. Try again shortly."))

        changed_ids = {o.resource_id for o in summary.outcomes if o.changed}
        return json.dumps({
            "status": summary.state.value,
            "message": summary.message,
            "changed": summary.changed,
            "failed": summary.failed,
            "processed": summary.processed,
            "changed_websites": [
                r.title for r in store.list(session) if r.id in changed_ids
            ],
            "errors": [
                {"url": o.url, "error": o.error}
                for o in summary.outcomes if o.error is not None
            ],
        })

    @tool
    def check_website(identifier: str) -> str:
        """Check one website for any change to its page since the last check.

        Args:
            identifier: The title or URL of the website to check.
        """
        resource = resolve(identifier)
        if isinstance(resource, dict):
            return json.dumps(resource)

        now = utcnow()
        try:
            result = asyncio.run(
                check_page_for_update(resource.url, resource.content_hash, fetch_func=fetch_func)
            )
        except (InvalidUrlError, FetchError, NetworkError) as e:
            try:
                store.update(session, resource.id, {"last_checked_at": now, "last_error": str(e)})
            except AdapterError as store_error:
                return json.dumps(_error(str(store_error)))
            return json.dumps(_error(f"Could not check '{resource.title}': {e}"))

        fields: dict = {
            "content_hash": result.content_hash,
            "last_checked_at": now,
            "last_error": None,
        }
        if result.changed:
            fields.update({"changed": True, "last_changed_at": now})
        try:
            store.update(session, resource.id, fields)
        except AdapterError as e:
            return json.dumps(_error(str(e)))

        return json.dumps({
            "status": "success",
            "title": resource.title,
            "url": resource.url,
            "changed": result.changed,
        })

    @tool
    def show_changes(identifier: str) -> str:
        """Show what is new on a website since its previous snapshot.

        Args:
            identifier: The title or URL of the website.
        """
        resource = resolve(identifier)
        if isinstance(resource, dict):
            return json.dumps(resource)

        if resource.previous_snapshot:
            whats_new = change_summary(
                resource.previous_snapshot, resource.content_snapshot, resource.main_content
            )
        else:
            whats_new = resource.main_content

        return json.dumps({
            "title": resource.title,
            "url": resource.url,
            "changed": resource.changed,
            "last_changed_at": _iso(resource.last_changed_at),
            "whats_new": whats_new,
            "feed_entries": [e.to_dict() for e in resource.feed_entries],
        })

    @tool
    def update_website(identifier: str, title: str = "", category: str = "") -> str:
        """Rename a tracked website or move it to another category.

        Args:
            identifier: The title or URL of the website.
            title: Optional new title.
            category: Optional new category.
        """
        resource = resolve(identifier)
        if isinstance(resource, dict):
            return json.dumps(resource)

        fields = {}
        if title:
            fields["title"] = truncate(title, TITLE_LIMIT)
        if category:
            fields["category"] = category
        if not fields:
            return json.dumps(_error("Provide a title and/or category"))

        try:
            store.update(session, resource.id, fields)
        except AdapterError as e:
            return json.dumps(_error(f"Error updating website: {e}"))
        return json.dumps({"status": "updated", "id": resource.id, **fields})

    @tool
    def remove_website(identifier: str) -> str:
        """Stop tracking a website by its title or URL.

        Args:
            identifier: The title or URL of the website to remove.
        """
        resource = resolve(identifier)
        if isinstance(resource, dict):
            return json.dumps(resource)

        try:
            store.delete(session, resource.id)
        except AdapterError as e:
            return json.dumps(_error(f"Error removing website: {e}"))
        return json.dumps({"status": "removed", "title": resource.title})

    return [
        add_website,
        list_websites,
        check_for_updates,
        check_website,
        show_changes,
        update_website,
        remove_website,
    ]


def _error(message: str) -> dict:
    return {"status": "error", "message": message}


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _summarize(resource: TrackedResource) -> dict:
    return {
        "id": resource.id,
        "title": resource.title,
        "url": resource.url,
        "category": resource.category,
        "is_feed": resource.is_feed,
        "changed": resource.changed,
        "description": resource.description,
        "last_changed_at": _iso(resource.last_changed_at),
        "last_checked_at": _iso(resource.last_checked_at),
        **({"last_error": resource.last_error} if resource.last_error else {}),
    }
