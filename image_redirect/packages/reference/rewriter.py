"""Rewrite image references onto a resolved registry domain.

The complete form of a reference is ``domain/namespace/image:tag``. Clients
usually send something shorter, so the leading components have to be
interpreted before the domain can be swapped:

    nginx                    -> <domain>/library/nginx
    myuser/nginx             -> <domain>/myuser/nginx
    localhost/nginx          -> <domain>/library/nginx
    registry.example.com/app -> <domain>/library/app
    oldreg.io/myuser/nginx   -> <domain>/myuser/nginx

Tags are never part of the input; callers reattach them.
"""

from dataclasses import dataclass


def looks_like_domain(component: str) -> bool:
    """Whether the first path component of a reference names a registry.

    Mirrors the usual reference normalization heuristic: a component holding a
    ``.`` or a ``:`` (port) or equal to ``localhost`` is a registry host,
    anything else is a user namespace.
    """
    return "." in component or ":" in component or component == "localhost"


@dataclass(frozen=True)
class ReferenceRewriter:
    """Maps ``(domain, image_without_tag)`` to a fully qualified reference."""

    default_namespace: str = "library"

    def rewrite(self, domain: str, image_without_tag: str) -> str:
        separators = image_without_tag.count("/")

        if separators == 0:
            # image
            return f"{domain}/{self.default_namespace}/{image_without_tag}"

        first, _, remainder = image_without_tag.partition("/")

        if separators == 1:
            if not looks_like_domain(first):
                # user/image
                return f"{domain}/{image_without_tag}"
            # registry/image
            return f"{domain}/{self.default_namespace}/{remainder}"

        if separators == 2:
            # registry/user/image
            return f"{domain}/{remainder}"

        # Untagged <none> images are filtered out before they get here
        return ""
