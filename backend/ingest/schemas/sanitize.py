from pydantic import BaseModel


class RemovedElements(BaseModel):
    scripts: int = 0
    iframes: int = 0
    event_handlers: int = 0
    dangerous_urls: int = 0
    forms: int = 0
    objects: int = 0

    model_config = {"frozen": True}


class SanitizeResult(BaseModel):
    """Sanitized markup plus removal counts (observability only, never a gate)."""

    html: str
    removed_elements: RemovedElements = RemovedElements()
    has_unsafe_content: bool = False

    model_config = {"frozen": True}


class SanitizeOptions(BaseModel):
    allow_iframes: bool = True
    iframe_whitelist: tuple[str, ...] | None = None  # None = built-in list
    remove_images: bool = False
    max_images: int | None = None
    harden_links: bool = True

    model_config = {"frozen": True}
