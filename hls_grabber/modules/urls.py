from urllib.parse import urljoin


def resolve_url(base_url: str, reference: str) -> str:
    """
    Resolves a segment, variant or key URI against the URL of the playlist that referenced it.

    - absolute URLs are returned as they are (protocol relative ones get the scheme of the base)
    - "/path" is resolved against scheme + host of the base
    - everything else is resolved against the directory of the base (everything up to the last "/")
    """
    reference = reference.strip()
    if "://" in reference.split("?", 1)[0]:
        return reference

    return urljoin(base_url, reference)
