# ============================================================================
# src/notarial_intake/constants/vocabulary.py
# ============================================================================
"""
Domain Vocabulary
- Generic terms that are never a real credit institution
- Role and status words that are never a person's name
- Markers that identify a legal entity
- Marital status stems
"""

# Compared after lowercasing and trimming. Extraction sometimes returns
# these instead of the lender's actual name.
GENERIC_INSTITUTION_TERMS = frozenset({
    "credito",
    "crédito",
    "el credito",
    "el crédito",
    "hipoteca",
    "banco",
    "institucion",
    "institución",
    "entidad",
    "financiamiento",
})

MIN_INSTITUTION_LENGTH = 3

PLACEHOLDER_NAME_TERMS = frozenset({
    "coacreditado", "coacreditada", "acreditado", "acreditada",
    "comprador", "compradora", "vendedor", "vendedora",
    "casado", "casada", "soltero", "soltera",
    "divorciado", "divorciada", "viudo", "viuda",
    "moral", "fisica", "física", "persona",
    "conyuge", "cónyuge", "titular", "propietario", "propietaria",
})

LEGAL_ENTITY_MARKERS = (
    "s.a. de c.v.",
    "s.a.p.i.",
    "s. de r.l.",
    "s.a.",
    "sapi",
    "sociedad anonima",
    "sociedad anónima",
    "sociedad civil",
    "inmobiliaria",
    "desarrolladora",
    "constructora",
    "fideicomiso",
)

# prefix -> canonical marital status
MARITAL_STATUS_PREFIXES = {
    "solter": "single",
    "single": "single",
    "casad": "married",
    "married": "married",
    "divorc": "divorced",
    "viud": "widowed",
    "widow": "widowed",
}
