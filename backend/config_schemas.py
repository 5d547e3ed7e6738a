"""
OpsDesk — Configuration Schemas

Tagged variant types for the structured configuration carried by entities:
commission rules on ambassadors, and the data-source / column-mapping /
KPI / chart configuration of a dashboard project.

These are the boundary contract with the AI configuration generator: payloads
are validated here before anything is stored, and malformed payloads are
rejected with a ValidationError.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ============================================================
# COMMISSION RULES
# ============================================================

class PercentageRule(StrictModel):
    """Commission as a fraction of contract value"""
    type: Literal["percentage"] = "percentage"
    rate: float = Field(..., ge=0, le=1)


class FlatRule(StrictModel):
    """Fixed commission per period"""
    type: Literal["flat"] = "flat"
    amount_cents: int = Field(..., ge=0)


CommissionRule = Annotated[Union[PercentageRule, FlatRule], Field(discriminator="type")]

DEFAULT_COMMISSION_RULE = PercentageRule(rate=0.10)


class _CommissionRuleEnvelope(StrictModel):
    rule: CommissionRule


# ============================================================
# DASHBOARD CONFIGURATION
# ============================================================

class AggregateKpi(StrictModel):
    type: Literal["sum", "avg", "count"]
    field: str = Field(..., min_length=1)
    filter: Optional[str] = None


class CalculatedKpi(StrictModel):
    type: Literal["calc"]
    formula: str = Field(..., min_length=1)


KpiRule = Annotated[Union[AggregateKpi, CalculatedKpi], Field(discriminator="type")]


class ChartSpec(StrictModel):
    type: Literal["line", "bar"]
    metric: str = Field(..., min_length=1)
    dimension: str = Field(..., min_length=1)


class SourceConfig(StrictModel):
    primary_date_column: Optional[str] = None
    spreadsheet_id: Optional[str] = None
    sheet_range: Optional[str] = None


class GeneratedDashboardConfig(StrictModel):
    """Structured output of the configuration generator"""

    source_config: SourceConfig = Field(default_factory=SourceConfig)
    column_mapping: Dict[str, str] = Field(default_factory=dict)
    kpi_rules: Dict[str, KpiRule] = Field(default_factory=dict)
    chart_config: Dict[str, ChartSpec] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)

    @field_validator("column_mapping")
    @classmethod
    def mapping_targets_present(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key, header in v.items():
            if not key.strip() or not header.strip():
                raise ValueError(f"Column mapping entries must be non-empty: {key!r} -> {header!r}")
        return v

    @model_validator(mode="after")
    def charts_reference_kpis(self) -> "GeneratedDashboardConfig":
        for chart_key, chart in self.chart_config.items():
            if chart.metric not in self.kpi_rules:
                raise ValueError(f"Chart '{chart_key}' references unknown KPI '{chart.metric}'")
        return self


# ============================================================
# BOUNDARY VALIDATION
# ============================================================

def describe_validation_error(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def validate_dashboard_config(payload: Any) -> GeneratedDashboardConfig:
    """Validate a generator payload, raising ValidationError when malformed"""
    if isinstance(payload, GeneratedDashboardConfig):
        return payload
    try:
        return GeneratedDashboardConfig.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid dashboard configuration: {describe_validation_error(e)}") from e


def parse_commission_rule(payload: Any) -> Union[PercentageRule, FlatRule]:
    if isinstance(payload, (PercentageRule, FlatRule)):
        return payload
    try:
        return _CommissionRuleEnvelope.model_validate({"rule": payload}).rule
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid commission rule: {describe_validation_error(e)}") from e
