"""Which images are in use, and by whom."""

from collections import defaultdict
from typing import Dict, Iterable, List

from kitgc.models import Integration

UsageMap = Dict[str, List[Integration]]


def get_used_images(integrations: Iterable[Integration]) -> UsageMap:
    """Map each image reference to the Integrations whose status image equals it.

    Integrations that have not been assigned an image yet are left out, so an
    empty reference never counts as "in use".
    """
    used: Dict[str, List[Integration]] = defaultdict(list)
    for integration in integrations:
        if not integration.image:
            continue
        used[integration.image].append(integration)
    return dict(used)
