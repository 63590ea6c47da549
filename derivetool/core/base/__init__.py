"""derivetool.core.base: IR（中間表現）と生成計画の定義

純粋なデータ定義（最下層）
"""

from .annotations import Annotation, Mapping, Path, PayloadShape, Span
from .ir import (
    DefinitionMeta,
    DefinitionSet,
    ElementKind,
    ElementRef,
    FieldDef,
    GenericParam,
    RawAnnotation,
    SourceLocation,
    TypeDefinition,
    VariantDef,
)
from .plan import GeneratedBlock, GenerationPlan, GenericSignature, MemberKind, MethodSpec

__all__ = [
    # IR data classes
    "DefinitionMeta",
    "DefinitionSet",
    "ElementKind",
    "ElementRef",
    "FieldDef",
    "GenericParam",
    "RawAnnotation",
    "SourceLocation",
    "TypeDefinition",
    "VariantDef",
    # Annotations
    "Annotation",
    "Mapping",
    "Path",
    "PayloadShape",
    "Span",
    # Generation plan
    "GeneratedBlock",
    "GenerationPlan",
    "GenericSignature",
    "MemberKind",
    "MethodSpec",
]
