"""Graphic references and the per-graphic parameter schema they are checked against."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


GraphicParamValue = Union[bool, int, float, str]

SUMMARY_THEMES = ("default", "espn", "nbc", "btn", "pac12", "neon", "classic", "light")


@dataclass(frozen=True)
class ParamSpec:
    kind: str  # string | number | enum | boolean
    required: bool = False
    options: Tuple[str, ...] = ()
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    # Filled in by the renderer from competition config when absent
    from_competition: bool = False


def _competition(kind: str = "string") -> ParamSpec:
    return ParamSpec(kind=kind, from_competition=True)


def _event_frame() -> Dict[str, ParamSpec]:
    return {"title": ParamSpec("string"), "logo": _competition()}


def _stream_screen() -> Dict[str, ParamSpec]:
    return {
        "title": ParamSpec("string"),
        "logo": _competition(),
        "eventName": _competition(),
        "meetDate": _competition(),
    }


GRAPHIC_PARAM_SCHEMAS: Dict[str, Dict[str, ParamSpec]] = {
    # pre-meet
    "logos": {},
    "event-bar": {
        "team1Logo": _competition(),
        "venue": _competition(),
        "eventName": _competition(),
        "location": _competition(),
    },
    "warm-up": {"team1Logo": _competition(), "venue": _competition()},
    "hosts": {"hosts": ParamSpec("string", required=True)},
    "team-stats": {
        "teamSlot": ParamSpec("number", required=True, minimum=1, maximum=6),
        "teamName": _competition(),
        "logo": _competition(),
        "ave": ParamSpec("string"),
        "high": ParamSpec("string"),
    },
    "team-coaches": {
        "teamSlot": ParamSpec("number", required=True, minimum=1, maximum=6),
        "logo": _competition(),
        "coaches": _competition(),
    },
    # in-meet
    "replay": {"team1Logo": _competition()},
    # event frames
    "floor": _event_frame(),
    "pommel": _event_frame(),
    "rings": _event_frame(),
    "vault": _event_frame(),
    "pbars": _event_frame(),
    "hbar": _event_frame(),
    "ubars": _event_frame(),
    "beam": _event_frame(),
    "allaround": _event_frame(),
    "final": _event_frame(),
    "order": _event_frame(),
    "lineups": _event_frame(),
    "summary": _event_frame(),
    # frame overlays
    "frame-quad": {},
    "frame-dual": {},
    "frame-single": {"team1Logo": _competition()},
    # summaries
    "event-summary": {
        "summaryMode": ParamSpec("enum", options=("rotation", "apparatus")),
        "summaryRotation": ParamSpec("number", minimum=1, maximum=6),
        "summaryApparatus": ParamSpec("string"),
        "summaryFormat": _competition(),
        "summaryTheme": ParamSpec("enum", options=SUMMARY_THEMES),
        "comp": _competition(),
    },
    # stream
    "stream-starting": _stream_screen(),
    "stream-thanks": _stream_screen(),
}


def validate_graphic_params(graphic_id: str, params: Dict[str, GraphicParamValue]) -> None:
    """Raise ValueError when params do not fit the schema registered for graphic_id."""
    schema = GRAPHIC_PARAM_SCHEMAS.get(graphic_id)
    if schema is None:
        raise ValueError(f"Unknown graphic '{graphic_id}'")

    unknown = sorted(set(params) - set(schema))
    if unknown:
        raise ValueError(f"Graphic '{graphic_id}' has no parameter(s): {', '.join(unknown)}")

    for name, spec in schema.items():
        if name not in params:
            if spec.required:
                raise ValueError(f"Graphic '{graphic_id}' requires parameter '{name}'")
            continue
        value = params[name]
        if spec.kind == "boolean":
            if not isinstance(value, bool):
                raise ValueError(f"{graphic_id}.{name}: must be a boolean")
        elif spec.kind == "number":
            # bool is an int subclass; reject it explicitly
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{graphic_id}.{name}: must be a number")
            if spec.minimum is not None and value < spec.minimum:
                raise ValueError(f"{graphic_id}.{name}: must be >= {spec.minimum:g}")
            if spec.maximum is not None and value > spec.maximum:
                raise ValueError(f"{graphic_id}.{name}: must be <= {spec.maximum:g}")
        elif spec.kind == "enum":
            if value not in spec.options:
                raise ValueError(
                    f"{graphic_id}.{name}: invalid value '{value}'. Valid values: {', '.join(spec.options)}"
                )
        elif not isinstance(value, str):
            raise ValueError(f"{graphic_id}.{name}: must be a string")


class GraphicRef(BaseModel):
    """Graphic shown with a segment, with parameters typed by its schema."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    graphic_id: str
    params: Dict[str, GraphicParamValue] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_params(self) -> "GraphicRef":
        validate_graphic_params(self.graphic_id, self.params)
        return self
