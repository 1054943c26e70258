"""Build node pool configuration that mirrors an existing storage/replica setup."""

import logging
from typing import Any, Iterable, Optional

from .exceptions import ConfigIncomplete
from .models import StorageSpec, StorageType, Volume
from .resources import is_absent

logger = logging.getLogger(__name__)

_OPTIONAL_FIELDS = ("class", "deleteClaim")


def mirror_replicas(value: Any, origin: str) -> int:
    """
    Copy a replica count.

    Args:
        value: Replica count read from the source resource
        origin: Field path of the value, used in error messages

    Raises:
        ConfigIncomplete: If the value is absent or not an integer
    """
    if is_absent(value):
        raise ConfigIncomplete(origin, f"Replica count not found in {origin}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigIncomplete(
            origin, f"Replica count in {origin} is not a number: {value!r}"
        ) from None


def mirror_storage(source: Optional[dict[str, Any]], origin: str) -> StorageSpec:
    """
    Copy a storage block field for field.

    Mandatory fields (type; size for persistent-claim; id and type of every
    JBOD volume) must be present in the source. Optional fields are copied only
    when set, so the result omits exactly what the source omits.

    Args:
        source: Storage dict of a Kafka resource (spec.kafka.storage) or a node
            pool (spec.storage)
        origin: Field path of the storage block, used in error messages

    Returns:
        StorageSpec equal to the source on every populated field

    Raises:
        ConfigIncomplete: If a mandatory field is missing
    """
    if not source:
        raise ConfigIncomplete(origin, f"Storage configuration not found in {origin}")

    raw_type = source.get("type")
    if is_absent(raw_type):
        raise ConfigIncomplete(f"{origin}.type", f"Storage type not found in {origin}.type")
    try:
        storage_type = StorageType(raw_type)
    except ValueError:
        raise ConfigIncomplete(
            f"{origin}.type", f"Unsupported storage type in {origin}.type: {raw_type!r}"
        ) from None

    if storage_type == StorageType.JBOD:
        return StorageSpec(type=storage_type, volumes=_mirror_volumes(source, origin))

    fields: dict[str, Any] = {"type": storage_type}
    size = source.get("size")
    if storage_type == StorageType.PERSISTENT_CLAIM and is_absent(size):
        raise ConfigIncomplete(f"{origin}.size", f"Storage size not found in {origin}.size")
    if not is_absent(size):
        fields["size"] = size
    for key in _OPTIONAL_FIELDS + ("id",):
        if not is_absent(source.get(key)):
            fields[key] = source[key]

    if source.get("overrides"):
        logger.warning(
            f"Storage overrides found in {origin} but not copied to node pool (complex field)"
        )

    return StorageSpec.model_validate(fields)


def _mirror_volumes(source: dict[str, Any], origin: str) -> list[Volume]:
    volumes = source.get("volumes") or []
    if not volumes:
        raise ConfigIncomplete(
            f"{origin}.volumes", f"JBOD volumes not found in {origin}.volumes"
        )

    mirrored = []
    for index, volume in enumerate(volumes):
        path = f"{origin}.volumes[{index}]"
        volume_id = volume.get("id")
        if is_absent(volume_id):
            raise ConfigIncomplete(f"{path}.id", f"Volume {index} missing required 'id' field")
        if is_absent(volume.get("type")):
            raise ConfigIncomplete(
                f"{path}.type",
                f"Volume {index} (id={volume_id}) missing required 'type' field",
            )

        fields: dict[str, Any] = {"id": volume_id, "type": volume["type"]}
        for key in ("size",) + _OPTIONAL_FIELDS:
            if not is_absent(volume.get(key)):
                fields[key] = volume[key]
        mirrored.append(Volume.model_validate(fields))

    return mirrored


def storage_from_sizes(sizes: Iterable[str], storage_class: Optional[str] = None) -> StorageSpec:
    """
    Build JBOD storage with one persistent-claim volume per size.

    Args:
        sizes: Volume sizes in order; blank entries are skipped
        storage_class: Storage class applied to every volume

    Raises:
        ConfigIncomplete: If no usable size is given
    """
    volumes = []
    for size in sizes:
        size = size.strip()
        if not size:
            logger.warning("Skipping empty size in list")
            continue
        fields: dict[str, Any] = {
            "id": len(volumes),
            "type": StorageType.PERSISTENT_CLAIM,
            "size": size,
        }
        if not is_absent(storage_class):
            fields["class"] = storage_class
        volumes.append(Volume.model_validate(fields))

    if not volumes:
        raise ConfigIncomplete(
            "controller-storage-sizes", "No valid sizes found in comma-separated list"
        )
    return StorageSpec(type=StorageType.JBOD, volumes=volumes)
