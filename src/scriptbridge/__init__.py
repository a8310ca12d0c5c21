"""
scriptbridge: typed calls into an embedded, reference-counted scripting runtime.

## Layers

- ``ownership``: exclusive and shared handles over raw runtime references
- ``conversion``: ``encode`` native values into runtime objects and ``decode``
  runtime objects into ``Out`` cells of a native type descriptor
- ``facade``: ``ScriptObject``, attribute lookup and positional calls

The runtime itself is a collaborator behind the ``Runtime`` interface;
``HostRuntime`` is the bundled in-process implementation, and ``Session``
brackets its lifetime.

## Example

```python
from scriptbridge import Out, Session

with Session.from_config() as session:
    module = session.load("scripts/geometry.py")
    result = module.call_function("bounding_box", [(0, 0), (3, 4)])
    out = Out(tuple[float, float, float, float])
    if not result.convert(out):
        raise ValueError(f"unexpected result {result.describe()}")
```
"""

from scriptbridge.config import BridgeConfig, LeakPolicy, load_config
from scriptbridge.conversion import Out, decode, default_value, encode, encode_bytes
from scriptbridge.errors import (
    AttributeLookupError,
    BridgeError,
    InvocationError,
    LoadError,
    RuntimeStateError,
)
from scriptbridge.facade import ScriptObject
from scriptbridge.host import HostRuntime
from scriptbridge.ownership import ExclusiveHandle, ForeignReference, SharedHandle
from scriptbridge.runtime import NULL_HANDLE, RawHandle, Runtime, TypeTag
from scriptbridge.session import Session

__all__ = [
    "AttributeLookupError",
    "BridgeConfig",
    "BridgeError",
    "ExclusiveHandle",
    "ForeignReference",
    "HostRuntime",
    "InvocationError",
    "LeakPolicy",
    "LoadError",
    "NULL_HANDLE",
    "Out",
    "RawHandle",
    "Runtime",
    "RuntimeStateError",
    "ScriptObject",
    "Session",
    "SharedHandle",
    "TypeTag",
    "decode",
    "default_value",
    "encode",
    "encode_bytes",
    "load_config",
]
