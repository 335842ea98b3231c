"""
This module implements server-side-apply field ownership over the generic dict
representation of cluster objects.

Every writer ("field manager") tags its applies with a stable name. The object
store records, per manager, the set of fields that manager last applied in
metadata.managedFields using the FieldsV1 encoding:

    {"f:status": {"f:conditions": {'k:{"type":"A"}': {".": {}, "f:status": {}}}}}

* "f:<name>" addresses a field of a map
* 'k:{...}' addresses the item of a list of maps whose key fields match
* "v:<json>" addresses a value of a list of scalars
* "." marks that the list item itself is owned

Internally a field set is a set of paths, each path a tuple of these elements.
"""

# Standard
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Set, Tuple
import copy
import json

# First Party
import alog

# Local
from . import constants
from .exceptions import ExtractionError

log = alog.use_channel("FIELDS")

FIELDS_TYPE = "FieldsV1"
APPLY_OPERATION = "Apply"
STATUS_SUBRESOURCE = "status"
ITEM_MARKER = "."

# Candidate key fields for lists of maps, tried in order. The first candidate
# present and unique in every item makes the list a keyed map.
LIST_MAP_KEYS = [
    ("group", "resource", "namespace", "name"),
    ("type",),
    ("name",),
]

Path = Tuple[str, ...]

_MISSING = object()

## Paths #######################################################################


def list_map_keys(items: list) -> Optional[Tuple[str, ...]]:
    """Determine the key fields of a list of maps, or None if the list must be
    treated atomically
    """
    if not items or not all(isinstance(item, dict) for item in items):
        return None
    for keys in LIST_MAP_KEYS:
        if not all(all(key in item for key in keys) for item in items):
            continue
        values = [json.dumps([item[key] for key in keys]) for item in items]
        if len(set(values)) == len(values):
            return keys
    return None


def item_element(item: dict, keys: Tuple[str, ...]) -> str:
    """Build the 'k:' path element addressing a list item"""
    return "k:" + json.dumps(
        {key: item[key] for key in keys}, sort_keys=True, separators=(",", ":")
    )


def collect_paths(value: Any, prefix: Path = ()) -> Set[Path]:
    """Compute the set of leaf paths set in the given value"""
    paths = set()
    _collect(value, prefix, paths)
    return paths


def _collect(value: Any, prefix: Path, out: Set[Path]):
    if isinstance(value, dict) and value:
        for key, child in value.items():
            _collect(child, prefix + (f"f:{key}",), out)
        return
    if isinstance(value, list):
        keys = list_map_keys(value)
        if keys is not None:
            for item in value:
                item_prefix = prefix + (item_element(item, keys),)
                out.add(item_prefix + (ITEM_MARKER,))
                for key, child in item.items():
                    _collect(child, item_prefix + (f"f:{key}",), out)
            return
    if prefix:
        out.add(prefix)


def applied_fields(manifest: dict, subresource: Optional[str] = None) -> dict:
    """Get the portion of a manifest that an apply claims ownership of. The
    status subresource only claims status. The main resource claims everything
    except status and the identifying and server-maintained fields.
    """
    if subresource == STATUS_SUBRESOURCE:
        if "status" in manifest:
            return {"status": copy.deepcopy(manifest["status"])}
        return {}

    fields = {
        key: copy.deepcopy(val)
        for key, val in manifest.items()
        if key not in ["apiVersion", "kind", "status"]
    }
    metadata = {
        key: val
        for key, val in fields.pop("metadata", {}).items()
        if key not in constants.IDENTITY_METADATA_FIELDS
        and key not in constants.SERVER_METADATA_FIELDS
    }
    if metadata:
        fields["metadata"] = metadata
    return fields


## FieldsV1 ####################################################################


def paths_to_fields_v1(paths: Iterable[Path]) -> dict:
    """Encode a set of paths as a FieldsV1 tree"""
    root = {}
    for path in sorted(paths):
        node = root
        for element in path:
            node = node.setdefault(element, {})
    return root


def fields_v1_to_paths(fields_v1: Any, prefix: Path = ()) -> Set[Path]:
    """Decode a FieldsV1 tree into a set of paths

    Raises:
        ExtractionError: The tree is not a valid FieldsV1 encoding
    """
    if not isinstance(fields_v1, dict):
        raise ExtractionError(
            f"Invalid FieldsV1 node at {list(prefix)}: {type(fields_v1).__name__}"
        )
    if not fields_v1:
        return {prefix} if prefix else set()
    paths = set()
    for element, child in fields_v1.items():
        if element == ITEM_MARKER:
            paths.add(prefix + (ITEM_MARKER,))
            continue
        if not isinstance(element, str) or not element.startswith(
            ("f:", "k:", "v:")
        ):
            raise ExtractionError(f"Unsupported field path element [{element}]")
        paths |= fields_v1_to_paths(child, prefix + (element,))
    return paths


## Managed Fields ##############################################################


def managed_field_entries(obj: dict) -> List[dict]:
    """Get the managedFields entries of an object"""
    entries = (obj or {}).get("metadata", {}).get("managedFields") or []
    if not isinstance(entries, list):
        raise ExtractionError("metadata.managedFields is not a list")
    return entries


def find_entry(
    obj: dict,
    field_manager: str,
    subresource: Optional[str] = None,
) -> Optional[dict]:
    """Find the Apply entry recorded for the given manager and subresource"""
    for entry in managed_field_entries(obj):
        if not isinstance(entry, dict):
            raise ExtractionError("Found a managedFields entry that is not a map")
        if (
            entry.get("manager") == field_manager
            and entry.get("operation", APPLY_OPERATION) == APPLY_OPERATION
            and (entry.get("subresource") or None) == subresource
        ):
            return entry
    return None


def entry_paths(entry: dict) -> Set[Path]:
    """Decode the field set of a managedFields entry"""
    fields_type = entry.get("fieldsType", FIELDS_TYPE)
    if fields_type != FIELDS_TYPE:
        raise ExtractionError(f"Unsupported fieldsType [{fields_type}]")
    return fields_v1_to_paths(entry.get("fieldsV1") or {})


def owned_paths(
    obj: dict,
    field_manager: str,
    subresource: Optional[str] = None,
) -> Set[Path]:
    """Get the set of paths the given manager owns on the object"""
    entry = find_entry(obj, field_manager, subresource)
    if entry is None:
        return set()
    return entry_paths(entry)


## Extraction ##################################################################


def extract_owned(obj: dict, paths: Iterable[Path]) -> dict:
    """Build the subset of the object made only of the given paths. Paths that
    are owned but no longer present in the object are skipped.

    Raises:
        ExtractionError: The object's shape does not match the paths
    """
    tree = paths_to_fields_v1(paths)
    if not tree:
        return {}
    return _extract(obj, tree, "")


def extract_managed(
    obj: dict,
    field_manager: str,
    subresource: Optional[str] = None,
) -> Optional[dict]:
    """Get what the given manager last applied to the object, or None if the
    manager owns nothing on it
    """
    paths = owned_paths(obj, field_manager, subresource)
    if not paths:
        return None
    return extract_owned(obj, paths)


def _extract(value: Any, node: dict, where: str) -> Any:
    children = {elem: child for elem, child in node.items() if elem != ITEM_MARKER}
    if not children:
        return copy.deepcopy(value)

    if all(elem.startswith("f:") for elem in children):
        if not isinstance(value, dict):
            raise ExtractionError(
                f"Owned fields under [{where}] but it is a {type(value).__name__}"
            )
        out = {}
        for key, child_value in value.items():
            child_node = children.get(f"f:{key}")
            if child_node is not None:
                out[key] = _extract(child_value, child_node, f"{where}.{key}")
        return out

    if not all(elem.startswith(("k:", "v:")) for elem in children):
        raise ExtractionError(f"Mixed map and list ownership under [{where}]")
    if not isinstance(value, list):
        raise ExtractionError(
            f"Owned list items under [{where}] but it is a {type(value).__name__}"
        )

    matchers = [
        (elem[:2], _parse_element(elem, where), child)
        for elem, child in children.items()
    ]
    out = []
    for item in value:
        for elem_type, match, child in matchers:
            if elem_type == "v:":
                if item == match:
                    out.append(copy.deepcopy(item))
                    break
                continue
            if _item_matches(item, match):
                sub_node = {e: c for e, c in child.items() if e != ITEM_MARKER}
                extracted = dict(match)
                if sub_node:
                    extracted.update(_extract(item, sub_node, where))
                out.append(extracted)
                break
    return out


def _parse_element(element: str, where: str) -> Any:
    try:
        parsed = json.loads(element[2:])
    except ValueError as err:
        raise ExtractionError(
            f"Invalid path element [{element}] under [{where}]"
        ) from err
    if element.startswith("k:") and not isinstance(parsed, dict):
        raise ExtractionError(f"List key [{element}] under [{where}] is not a map")
    return parsed


def _item_matches(item: Any, match: dict) -> bool:
    return isinstance(item, dict) and all(
        item.get(key, _MISSING) == val for key, val in match.items()
    )


## Merge #######################################################################


def merge_applied(base: dict, patch: dict) -> dict:
    """Merge the patch into the base in place. Maps merge recursively, keyed
    lists merge item by item, and everything else is replaced.
    """
    for key, value in patch.items():
        current = base.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            merge_applied(current, value)
            continue
        keys = list_map_keys(value) if isinstance(value, list) else None
        if (
            keys is not None
            and isinstance(current, list)
            and all(
                isinstance(item, dict) and all(k in item for k in keys)
                for item in current
            )
        ):
            for item in value:
                match = _find_item(current, {k: item[k] for k in keys})
                if match is None:
                    current.append(copy.deepcopy(item))
                else:
                    merge_applied(match, item)
            continue
        base[key] = copy.deepcopy(value)
    return base


def _find_item(items: list, match: dict) -> Optional[dict]:
    for item in items:
        if _item_matches(item, match):
            return item
    return None


def get_path(obj: Any, path: Path) -> Any:
    """Get the value at a path, or a sentinel if it is not set"""
    value = obj
    for element in path:
        if element == ITEM_MARKER:
            continue
        if element.startswith("f:"):
            if not isinstance(value, dict) or element[2:] not in value:
                return _MISSING
            value = value[element[2:]]
        elif element.startswith("k:"):
            if not isinstance(value, list):
                return _MISSING
            value = _find_item(value, json.loads(element[2:]))
            if value is None:
                return _MISSING
        else:
            target = json.loads(element[2:])
            return target if isinstance(value, list) and target in value else _MISSING
    return value


def delete_path(obj: dict, path: Path, keep: Iterable[Path] = ()):
    """Remove the value at a path, pruning maps left empty on the way unless
    their own path is in keep
    """
    _delete(obj, list(path), (), set(keep))


def _delete(value: Any, path: List[str], prefix: Path, keep: Set[Path]) -> bool:
    """Returns True if the value itself should be removed by its parent"""
    element = path[0]
    rest = path[1:]
    here = prefix + (element,)
    if element == ITEM_MARKER:
        return True
    if element.startswith("f:"):
        key = element[2:]
        if not isinstance(value, dict) or key not in value:
            return False
        if not rest or _delete(value[key], rest, here, keep):
            del value[key]
        elif isinstance(value[key], dict) and not value[key] and here not in keep:
            del value[key]
        return False
    if not isinstance(value, list):
        return False
    target = json.loads(element[2:])
    if element.startswith("v:"):
        if target in value:
            value.remove(target)
        return False
    item = _find_item(value, target)
    if item is not None and rest and _delete(item, rest, here, keep):
        value.remove(item)
    return False


## Apply #######################################################################


def apply_owned_fields(
    current: Optional[dict],
    manifest: dict,
    field_manager: str,
    subresource: Optional[str] = None,
) -> dict:
    """Compute the result of a server-side apply of the manifest by the given
    manager onto the current object.

    * Fields in the manifest are merged onto the current object
    * Fields this manager applied before, omitted now and owned by nobody else
      are removed
    * Fields whose value this apply changes move to this manager; fields with
      an unchanged value become shared
    * The manager's managedFields entry is replaced with the applied field set

    Args:
        current:  Optional[dict]
            The current object, or None if it does not exist yet
        manifest:  dict
            The applied manifest
        field_manager:  str
            The name of the writer
        subresource:  Optional[str]
            "status" to apply to the status subresource

    Returns:
        merged:  dict
            The resulting object with updated managedFields
    """
    merged = copy.deepcopy(current) if current else {}
    if not current:
        merged["apiVersion"] = manifest.get("apiVersion")
        merged["kind"] = manifest.get("kind")
        merged["metadata"] = {
            key: val
            for key, val in manifest.get("metadata", {}).items()
            if key in constants.IDENTITY_METADATA_FIELDS
        }
    metadata = merged.setdefault("metadata", {})
    entries = copy.deepcopy(managed_field_entries(merged))
    metadata.pop("managedFields", None)

    claimed = applied_fields(manifest, subresource)
    new_paths = collect_paths(claimed)
    own_entry = find_entry(
        {"metadata": {"managedFields": entries}}, field_manager, subresource
    )
    old_paths = entry_paths(own_entry) if own_entry else set()

    before = copy.deepcopy(merged)
    merge_applied(merged, claimed)

    # Transfer ownership of fields whose value this apply changed
    kept_entries = []
    still_owned = set()
    for entry in entries:
        if entry is own_entry:
            kept_entries.append(entry)
            continue
        paths = entry_paths(entry)
        transferred = {
            path
            for path in paths & new_paths
            if get_path(before, path) != get_path(merged, path)
        }
        if transferred:
            log.debug2(
                "Moving %d fields from [%s] to [%s]",
                len(transferred),
                entry.get("manager"),
                field_manager,
            )
            paths -= transferred
            entry["fieldsV1"] = paths_to_fields_v1(paths)
        if paths:
            kept_entries.append(entry)
            still_owned |= paths

    # Remove fields this manager dropped from its apply
    for path in sorted(old_paths - new_paths - still_owned, key=len, reverse=True):
        log.debug3("Removing field %s dropped by [%s]", path, field_manager)
        delete_path(merged, path, keep=new_paths | still_owned)

    new_entry = None
    if new_paths:
        new_entry = {
            "manager": field_manager,
            "operation": APPLY_OPERATION,
            "apiVersion": manifest.get("apiVersion"),
            "time": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "fieldsType": FIELDS_TYPE,
            "fieldsV1": paths_to_fields_v1(new_paths),
        }
        if subresource:
            new_entry["subresource"] = subresource

    final_entries = []
    for entry in kept_entries:
        if entry is own_entry:
            if new_entry:
                final_entries.append(new_entry)
                new_entry = None
            continue
        final_entries.append(entry)
    if new_entry:
        final_entries.append(new_entry)

    merged.setdefault("metadata", {})["managedFields"] = final_entries
    return merged
