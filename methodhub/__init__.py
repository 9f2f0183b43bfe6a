from methodhub.hub_datatypes import (
    NoneType, HubError, InvalidArgument, DuplicateRegistration, MethodNotFound,
    InternalConsistencyError, UnreachableTypeError, ManifestError,
    Char, RegisteringBehavior, Invokable, CallableEntry, TypeNode, DispatchResult,
)
from methodhub.hub_config import HubConfig
from methodhub.hub_oracle import TypeOracle, Direction, build_type_tree, default_oracle
from methodhub.hub_pipeline import CandidatePipeline
from methodhub.hub_store import ThreadingDict
from methodhub.hub_printer import Printer
from methodhub.hub_runtime import MethodHub, describe, derive_name
from methodhub.hub_manifest import load_manifest

__all__ = [
    "MethodHub", "HubConfig", "RegisteringBehavior", "load_manifest",
    "HubError", "InvalidArgument", "DuplicateRegistration", "MethodNotFound",
    "InternalConsistencyError", "UnreachableTypeError", "ManifestError",
    "Char", "Invokable", "CallableEntry", "TypeNode", "DispatchResult", "NoneType",
    "TypeOracle", "Direction", "build_type_tree", "default_oracle",
    "CandidatePipeline", "ThreadingDict", "Printer", "describe", "derive_name",
]
