"""Percentile wording for the results screen.

Tiers, the per-user quote of the day and the one-line performance summary
(percentile, weekly trend, z-score). All pure functions of their inputs plus
the date, which callers may pass explicitly.
"""

import math
from dataclasses import dataclass
from datetime import date

PercentileTier = str

VERY_LOW = "very_low"
LOW = "low"
MID = "mid"
HIGH = "high"
ELITE = "elite"

QUOTES_BY_TIER: dict[PercentileTier, tuple[str, ...]] = {
    VERY_LOW: (
        "La dificultad fortalece la mente. — Séneca",
        "Lo que duele instruye. — Benjamin Franklin",
        "Ningún viento es favorable para quien no sabe a dónde va. — Séneca",
        "La experiencia es maestra severa pero eficaz. — Cicerón",
        "Quien se equivoca y no corrige, comete un segundo error. — Confucio",
        "La adversidad revela el carácter. — Séneca",
    ),
    LOW: (
        "La excelencia es fruto del hábito. — Aristóteles",
        "La mejora constante vence al talento ocasional.",
        "El progreso es acumulativo.",
        "Pequeños pasos sostenidos construyen grandes resultados.",
        "La constancia supera la inspiración.",
    ),
    MID: (
        "Lo que hacemos repetidamente nos define. — Aristóteles",
        "La calidad de tu mente determina tu vida. — Marco Aurelio",
        "El equilibrio es poder.",
        "La regularidad construye estructura.",
        "La estabilidad es la antesala del avance.",
        "La virtud está en el punto medio. — Aristóteles",
    ),
    HIGH: (
        "El esfuerzo disciplinado genera ventaja.",
        "La práctica constante supera al talento aislado.",
        "La excelencia clínica se entrena.",
        "El dominio nace de la repetición consciente.",
        "La ventaja se construye día a día.",
    ),
    ELITE: (
        "La excelencia no es un acto, es un hábito. — Aristóteles",
        "La grandeza exige consistencia.",
        "El éxito es disciplina acumulada.",
        "La diferencia está en la ejecución.",
        "Lo extraordinario es lo ordinario hecho mejor.",
    ),
}

# (upper bound inclusive, performance line template, closing line)
_PERFORMANCE_BANDS: tuple[tuple[float, str, str], ...] = (
    (
        20,
        "Percentil {p} hoy. Rendimiento por debajo del grupo.",
        "Detecta el patrón de error antes del próximo daily.",
    ),
    (
        40,
        "Percentil {p}. Zona media baja del grupo.",
        "Ajustar precisión y tiempo puede cambiar el resultado.",
    ),
    (
        60,
        "Percentil {p}. Rendimiento alineado con la media.",
        "La consistencia empieza a marcar diferencia.",
    ),
    (
        80,
        "Percentil {p}. Por encima de la mayoría hoy.",
        "Mantener este nivel genera ventaja estructural.",
    ),
    (
        float("inf"),
        "Percentil {p}. Franja alta del grupo.",
        "Este rendimiento sostenido impacta directamente en tu posición global.",
    ),
)


@dataclass(frozen=True)
class PercentileSummary:
    """The three lines shown under the percentile gauge."""

    lead: str
    quote: str
    closing: str


def percentile_tier(value: float) -> PercentileTier:
    if value <= 20:
        return VERY_LOW
    if value <= 40:
        return LOW
    if value <= 60:
        return MID
    if value <= 80:
        return HIGH
    return ELITE


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _seed_hash(seed: str) -> int:
    # 31-multiplier string hash with 32-bit wraparound on the shift.
    acc = 0
    for char in seed:
        acc = ord(char) + (_to_int32(_to_int32(acc) << 5) - acc)
    return acc


def stable_quote(value: float, user_id: str, today: date | None = None) -> str:
    """Picks the quote for a user's percentile; fixed for the whole day."""
    quotes = QUOTES_BY_TIER[percentile_tier(value)]
    day = (today or date.today()).isoformat()
    seed = f"{user_id}-{day}-{math.floor(value)}"
    return quotes[abs(_seed_hash(seed)) % len(quotes)]


def trend_line(trend: float | None) -> str:
    if trend is None:
        return ""
    if trend > 0:
        return "Tendencia semanal positiva."
    if trend < 0:
        return "Ligero descenso reciente, vigila consistencia."
    return "Tendencia estable."


def z_score_line(z_score: float | None) -> str:
    """Describes a z-score relative to the mean (±0.25 counts as "en la media")."""
    if z_score is None:
        return ""
    if z_score < -0.25:
        return f"Z-score {z_score:.2f}: por debajo de la media."
    if z_score > 0.25:
        return f"Z-score {z_score:.2f}: por encima de la media."
    return f"Z-score {z_score:.2f}: en la media."


def summarize_percentile(
    value: float,
    user_id: str,
    *,
    trend: float | None = None,
    z_score: float | None = None,
    today: date | None = None,
) -> PercentileSummary:
    """Builds the lead/quote/closing lines for a percentile value."""
    rounded = math.floor(value + 0.5)
    for upper, template, closing in _PERFORMANCE_BANDS:
        if rounded <= upper:
            performance = template.format(p=rounded)
            break
    extras = " ".join(line for line in (trend_line(trend), z_score_line(z_score)) if line)
    return PercentileSummary(
        lead=f"{performance} {extras}" if extras else performance,
        quote=stable_quote(value, user_id, today),
        closing=closing,
    )
