"""Rule-based query expansion for informal HR questions.

Two tables drive it, both matched by substring containment against the
lower-cased question, and every matching trigger fires:

  expansions  trigger -> formal synonyms appended to the embedding input
  rewrites    trigger -> a full alternative query for multi-query search

Tables are immutable values passed in by the caller; the Dutch HR
tables below are the default.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

ALTERNATIVE_TERMS_PER_TRIGGER = 3


@dataclass(frozen=True)
class QueryExpansionTables:
    expansions: Mapping[str, tuple[str, ...]]
    rewrites: Mapping[str, str]

    @classmethod
    def build(
        cls, expansions: dict[str, list[str] | tuple[str, ...]], rewrites: dict[str, str]
    ) -> QueryExpansionTables:
        return cls(
            expansions=MappingProxyType({k.lower(): tuple(v) for k, v in expansions.items()}),
            rewrites=MappingProxyType({k.lower(): v for k, v in rewrites.items()}),
        )


DUTCH_HR_TABLES = QueryExpansionTables.build(
    expansions={
        # salaris / betaling
        "geld": ["salaris", "betaaldata", "loon", "uitbetaling", "betaling"],
        "betaald": ["salaris", "betaaldata", "loon", "uitbetaling"],
        "krijg": ["salaris", "betaaldata", "uitbetaling", "ontvangen"],
        "wanneer krijg": ["betaaldata", "salarisbetaling", "uitbetaling", "betaaldatum"],
        "salaris": ["betaaldata", "loon", "uitbetaling", "salarisstrook"],
        # bonus / 1% regeling
        "bonus": [
            "eenmalige bruto uitkering", "1%", "extra uitkering", "winstdeling",
            "eindejaarsuitkering",
        ],
        "1%": ["eenmalige bruto uitkering", "jaarlijkse uitkering", "bonus", "november oktober"],
        "1 procent": ["eenmalige bruto uitkering", "1%", "jaarlijkse uitkering"],
        "extra": ["bonus", "eenmalige bruto uitkering", "toeslag", "extra uitkering"],
        "november": ["eenmalige bruto uitkering", "1%", "oktober", "jaarlijkse uitkering"],
        "uitkering": ["eenmalige bruto uitkering", "1%", "bonus", "vakantietoeslag"],
        # verlof / vakantie
        "vrij": ["verlof", "vakantie", "vrije dagen", "vakantiedagen"],
        "vakantie": ["verlof", "vakantiedagen", "verlofaanvraag"],
        "snipperdag": ["verlof", "vakantiedagen", "vrije dag"],
        "verlof": ["vakantie", "vakantiedagen", "vrije dagen"],
        # ziekte
        "ziek": ["ziekmelding", "ziekteverzuim", "arbeidsongeschikt", "verzuim"],
        "griep": ["ziekmelding", "ziekteverzuim"],
        "ziekmelden": ["ziekmelding", "verzuimprotocol"],
        # contract
        "contract": ["arbeidsovereenkomst", "arbeidscontract", "dienstverband"],
        "ontslag": ["beëindiging", "opzegtermijn", "ontslagprocedure"],
        "stoppen": ["opzegging", "ontslag", "beëindiging"],
        # pensioen
        "pensioen": ["pensioenregeling", "AOW", "pensioenfonds"],
        "oud": ["pensioen", "AOW", "stoppen met werken"],
        # lease / mobiliteit
        "auto": ["leaseauto", "lease regeling", "mobiliteit"],
        "lease": ["leaseauto", "mobiliteitsregeling", "lease a bike"],
        "fiets": ["lease a bike", "fietsregeling", "mobiliteit"],
        # thuiswerken
        "thuis": ["thuiswerken", "hybride werken", "remote"],
        "remote": ["thuiswerken", "hybride werken"],
        # algemeen
        "cao": ["collectieve arbeidsovereenkomst", "arbeidsvoorwaarden"],
        "regeling": ["beleid", "procedure", "richtlijn"],
    },
    rewrites={
        "wanneer krijg ik": "betaaldata salaris uitbetaling",
        "wanneer krijg ik geld": "betaaldata 2025 salarisbetaling",
        "wanneer krijg ik me geld": "betaaldata 2025 salarisbetaling",
        "wanneer krijg ik mijn geld": "betaaldata 2025 salarisbetaling",
        "wanneer word ik betaald": "betaaldata salaris uitbetaling",
        "wanneer salaris": "betaaldata salaris uitbetaling",
        "geld krijgen": "betaaldata salaris uitbetaling",
        "me geld": "betaaldata salaris uitbetaling",
        "mijn geld": "betaaldata salaris uitbetaling",
        "betaald krijgen": "betaaldata salarisbetaling",
        "loon krijgen": "betaaldata salaris uitbetaling",
        "kan ik vrij": "verlofaanvraag vakantie procedure",
        "wil vrij": "verlofaanvraag vakantie",
        "vrij nemen": "verlofaanvraag vakantiedagen",
        "dag vrij": "verlofaanvraag vakantiedag",
        "vakantie opnemen": "verlofaanvraag vakantiedagen procedure",
        "ben ziek": "ziekmelding procedure verzuim",
        "ik ben ziek": "ziekmelding procedure",
        "ziek melden": "ziekmelding verzuimprotocol",
        "niet werken ziek": "ziekmelding verzuim procedure",
        "wanneer pensioen": "pensioenregeling AOW stoppen werken",
        "met pensioen": "pensioenregeling AOW",
        "auto van werk": "leaseauto mobiliteit regeling",
        "lease auto": "leaseauto mobiliteitsregeling",
        "bonus": "eenmalige bruto uitkering 1% jaarlijkse uitkering",
        "1% regeling": "eenmalige bruto uitkering jaarlijkse uitkering november oktober",
        "1 procent": "eenmalige bruto uitkering 1% jaarlijkse",
        "extra geld": "eenmalige bruto uitkering bonus toeslag",
        "in november": "eenmalige bruto uitkering 1% jaarlijkse uitkering oktober",
        "eindejaarsuitkering": "eenmalige bruto uitkering 1% december",
        "uitkering": "eenmalige bruto uitkering 1% jaarlijkse",
    },
)


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _firing_expansions(
    question: str, tables: QueryExpansionTables
) -> list[tuple[str, ...]]:
    lowered = question.lower()
    return [terms for trigger, terms in tables.expansions.items() if trigger in lowered]


def expand_query(question: str, tables: QueryExpansionTables = DUTCH_HR_TABLES) -> str:
    """Original question followed by the deduplicated expansion terms."""
    terms = _dedupe([term for terms in _firing_expansions(question, tables) for term in terms])
    if not terms:
        return question
    return f"{question} {' '.join(terms)}"


def generate_alternative_queries(
    question: str, tables: QueryExpansionTables = DUTCH_HR_TABLES
) -> list[str]:
    """Rewrites first, then one short query per firing expansion trigger."""
    lowered = question.lower()
    alternatives = [rewrite for trigger, rewrite in tables.rewrites.items() if trigger in lowered]
    alternatives.extend(
        " ".join(terms[:ALTERNATIVE_TERMS_PER_TRIGGER])
        for terms in _firing_expansions(question, tables)
    )
    return _dedupe(alternatives)


def expansion_terms(
    question: str,
    tables: QueryExpansionTables = DUTCH_HR_TABLES,
    per_trigger: int = ALTERNATIVE_TERMS_PER_TRIGGER,
) -> list[str]:
    return _dedupe(
        [term for terms in _firing_expansions(question, tables) for term in terms[:per_trigger]]
    )
