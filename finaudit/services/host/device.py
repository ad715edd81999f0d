"""Per-install device identifier, sent to the managed relay for quota accounting."""

from uuid import uuid4

from finaudit.services.storage.interface import KeyValueStore

DEVICE_ID_KEY = "device-id"


async def get_or_create_device_id(store: KeyValueStore) -> str:
    """
    Return the stored device id, creating and persisting one on first use.

    The id is opaque: a random UUID with no link to the user's identity.
    """
    device_id = await store.get(DEVICE_ID_KEY)
    if isinstance(device_id, str) and device_id:
        return device_id

    device_id = str(uuid4())
    await store.set(DEVICE_ID_KEY, device_id)
    return device_id
