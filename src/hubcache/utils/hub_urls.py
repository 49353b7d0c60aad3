"""
URL builders for the hub's file and metadata endpoints.
"""

from urllib.parse import quote

from hubcache.common.constants import DEFAULT_ENDPOINT, DEFAULT_REPO_TYPE, DEFAULT_REVISION

# URL path prefix per repository type ("org/name" for models, "datasets/org/name" ...)
REPO_TYPE_URL_PREFIXES = {
    "model": "",
    "dataset": "datasets/",
    "space": "spaces/",
}

# The metadata API uses plural type names for every repository type
REPO_TYPE_API_SEGMENTS = {
    "model": "models",
    "dataset": "datasets",
    "space": "spaces",
}


def _url_prefix(repo_type: str) -> str:
    try:
        return REPO_TYPE_URL_PREFIXES[repo_type]
    except KeyError:
        raise ValueError(f"Unknown repository type: {repo_type!r}") from None


def _quote_path(value: str) -> str:
    return quote(value, safe="/")


def _quote_revision(revision: str) -> str:
    # Branch names like "refs/pr/1" must stay a single path segment
    return quote(revision, safe="")


def resolve_url(
    repo_id: str,
    filename: str,
    revision: str = DEFAULT_REVISION,
    repo_type: str = DEFAULT_REPO_TYPE,
    endpoint: str = DEFAULT_ENDPOINT,
) -> str:
    """
    URL that redirects to the file content.

    Example:
        >>> resolve_url("org/name", "config.json")
        'https://huggingface.co/org/name/resolve/main/config.json'
    """
    return (
        f"{endpoint.rstrip('/')}/{_url_prefix(repo_type)}{_quote_path(repo_id)}"
        f"/resolve/{_quote_revision(revision)}/{_quote_path(filename)}"
    )


def raw_url(
    repo_id: str,
    filename: str,
    revision: str = DEFAULT_REVISION,
    repo_type: str = DEFAULT_REPO_TYPE,
    endpoint: str = DEFAULT_ENDPOINT,
) -> str:
    """URL of the file as stored in git (the LFS pointer for LFS files)."""
    return (
        f"{endpoint.rstrip('/')}/{_url_prefix(repo_type)}{_quote_path(repo_id)}"
        f"/raw/{_quote_revision(revision)}/{_quote_path(filename)}"
    )


def paths_info_url(
    repo_id: str,
    revision: str = DEFAULT_REVISION,
    repo_type: str = DEFAULT_REPO_TYPE,
    endpoint: str = DEFAULT_ENDPOINT,
) -> str:
    """URL of the paths-info metadata endpoint for a repository revision."""
    if repo_type not in REPO_TYPE_API_SEGMENTS:
        raise ValueError(f"Unknown repository type: {repo_type!r}")
    return (
        f"{endpoint.rstrip('/')}/api/{REPO_TYPE_API_SEGMENTS[repo_type]}/{_quote_path(repo_id)}"
        f"/paths-info/{_quote_revision(revision)}"
    )


def revision_info_url(
    repo_id: str,
    revision: str = DEFAULT_REVISION,
    repo_type: str = DEFAULT_REPO_TYPE,
    endpoint: str = DEFAULT_ENDPOINT,
) -> str:
    """URL of the revision endpoint, whose `sha` is the commit a branch or tag points at."""
    if repo_type not in REPO_TYPE_API_SEGMENTS:
        raise ValueError(f"Unknown repository type: {repo_type!r}")
    return (
        f"{endpoint.rstrip('/')}/api/{REPO_TYPE_API_SEGMENTS[repo_type]}/{_quote_path(repo_id)}"
        f"/revision/{_quote_revision(revision)}"
    )
