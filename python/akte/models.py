from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    field_validator,
)

# Wire spellings accepted for comparison operators, mapped to the canonical name.
OPERATOR_ALIASES = {
    "==": "=",
    "<>": "!=",
    "bevat": "contains",
    "begint_met": "begins_with",
    "eindigt_met": "ends_with",
    "leeg": "empty",
    "niet_leeg": "not_empty",
    "niet_in": "not_in",
}

LOGICAL_OPERATORS = ("AND", "OR")

_GROUP_KEYS = ("conditions", "voorwaarden")
_COMPARISON_KEYS = ("field", "veld", "value", "waarde")


class Comparison(BaseModel):
    """
    Leaf of a condition tree: compares a context field against a value.
    A comparison without field or operator is kept and evaluates to false.
    """

    field: Optional[str] = Field(None, validation_alias=AliasChoices("field", "veld"))
    operator: Optional[str] = Field(None)
    value: Any = Field(None, validation_alias=AliasChoices("value", "waarde"))

    @field_validator("operator", mode="before")
    @classmethod
    def _canonical_operator(cls, v):
        if v is None:
            return None
        op = str(v).strip().lower()
        return OPERATOR_ALIASES.get(op, op)


class Group(BaseModel):
    """AND/OR node of a condition tree."""

    operator: Literal["AND", "OR"] = "AND"
    conditions: List["Condition"] = Field(
        default_factory=list, validation_alias=AliasChoices("conditions", "voorwaarden")
    )

    @field_validator("operator", mode="before")
    @classmethod
    def _upper_operator(cls, v):
        return str(v).strip().upper() if v is not None else "AND"


def _condition_kind(v: Any) -> Optional[str]:
    """
    Tags a raw condition node. The wire format shares 'operator' between both
    variants, so the remaining keys decide. Returning None fails validation.
    """
    if isinstance(v, Group):
        return "group"
    if isinstance(v, Comparison):
        return "comparison"
    if not isinstance(v, dict):
        return None

    is_group = any(k in v for k in _GROUP_KEYS)
    is_comparison = any(k in v for k in _COMPARISON_KEYS)
    if is_group and is_comparison:
        return None
    if is_group:
        return "group"
    if is_comparison:
        return "comparison"

    op = v.get("operator")
    if op is None:
        return None
    return "group" if str(op).strip().upper() in LOGICAL_OPERATORS else "comparison"


Condition = Annotated[
    Union[
        Annotated[Comparison, Tag("comparison")],
        Annotated[Group, Tag("group")],
    ],
    Discriminator(_condition_kind),
]

Group.model_rebuild()


class Rule(BaseModel):
    condition: Condition = Field(..., validation_alias=AliasChoices("condition", "conditie"))
    result: str = Field("", validation_alias=AliasChoices("result", "resultaat"))

    @field_validator("result", mode="before")
    @classmethod
    def _null_result(cls, v):
        return "" if v is None else v


class ConditionConfig(BaseModel):
    """
    Ordered rules with a fallback. The first rule whose condition holds wins.
    """

    rules: List[Rule] = Field(default_factory=list, validation_alias=AliasChoices("rules", "regels"))
    default: str = ""

    @field_validator("default", mode="before")
    @classmethod
    def _null_default(cls, v):
        return "" if v is None else v

    @classmethod
    def from_json(cls, payload: Union[str, bytes, Dict[str, Any]]) -> "ConditionConfig":
        """Parses the wire format. Raises ValueError on malformed input."""
        try:
            if isinstance(payload, (str, bytes)):
                return cls.model_validate_json(payload)
            return cls.model_validate(payload)
        except ValidationError as e:
            raise ValueError(f"Invalid condition config: {e}") from e


class EvaluationStep(BaseModel):
    """Trace of one comparison evaluated while looking for a matching rule."""

    rule_index: int
    field: Optional[str] = None
    operator: Optional[str] = None
    expected: Any = None
    actual: Any = None
    outcome: bool


class EvaluationResult(BaseModel):
    matched_rule_index: Optional[int] = None
    raw_result: str = ""
    steps: List[EvaluationStep] = Field(default_factory=list)


class AssemblyOptions(BaseModel):
    """Knobs of the assembly pipeline."""

    remove_article_marker: str = Field("^", min_length=1, description="Block text that removes its enclosing article.")
    remove_block_marker: str = Field("#", min_length=1, description="Block text that removes the block itself.")
    max_nesting_depth: int = Field(5, ge=1, description="Passes of nested [[Key]] expansion in conditional results.")
    numbering_base_id: int = Field(9001, ge=1, description="abstractNumId and numId of the legal numbering definition.")
    restart_id_start: int = Field(9100, ge=1, description="First numId handed out for [[ARTIKEL_RESET]].")
    normalize: bool = Field(True, description="Merge split runs before matching tokens.")
    remove_content_controls: bool = Field(True, description="Unwrap content controls as the last stage.")


class AssemblyReport(BaseModel):
    """Summary of what one assembly run changed."""

    correlation_id: Optional[str] = None
    substituted_blocks: int = 0
    conditional_values: Dict[str, str] = Field(default_factory=dict)
    pruned_sections: int = 0
    kept_sections: int = 0
    generated_blocks: int = 0
    failed_generators: List[str] = Field(default_factory=list)
    removed_blocks: int = 0
    removed_articles: List[int] = Field(default_factory=list)
    renumbering: Dict[int, int] = Field(default_factory=dict)
    numbered_blocks: int = 0
    numbering_restarts: int = 0
    unwrapped_content_controls: int = 0
