from typing import Collection, List, Optional, Tuple

from ktail.clients import api
from ktail.structs import bodies, callbacks, configuration


async def list_pods(
        *,
        settings: configuration.Settings,
        namespace: Optional[str],
        logger: callbacks.Logger,
) -> Tuple[Collection[bodies.RawBody], Optional[str]]:
    """
    List the pods either in one namespace, or cluster-wide if it is ``None``.

    Returns the pods and the resource version of the list, from which
    the watch-stream should continue.
    """
    rsp = await api.get(
        url=api.build_url('pods', namespace=namespace),
        logger=logger,
        settings=settings,
    )

    items: List[bodies.RawBody] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', None)
    for item in rsp.get('items', []):
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'][:-4] if rsp['kind'][-4:] == 'List' else rsp['kind'])
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)

    return items, resource_version
