"""
Prédicats immuables sur les annonces.

Un `Predicate` est une conjonction de clauses (`Condition` ou `AnyOf`).
Chaque ajout renvoie un nouveau prédicat : aucune mutation, ce qui permet de
construire et de tester chaque règle de filtrage séparément. Les magasins
(`geosearch.store`) évaluent ces valeurs en mémoire ou les compilent en SQL.

Sémantique des valeurs nulles alignée sur SQL : une comparaison contre un
attribut absent est fausse.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Tuple, Union

from geosearch.geo.distance import geo_distance


class Op(str, Enum):
    """Opérateurs supportés par le contrat du magasin."""
    EQ = "eq"
    NE = "ne"
    GE = "ge"
    LE = "le"
    GT = "gt"
    LT = "lt"
    IN = "in"
    ICONTAINS = "icontains"
    SUPERSET = "superset"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"
    LT_FIELD = "lt_field"
    WITHIN_KM = "within_km"


def _compare(op: Op, actual: Any, expected: Any) -> bool:
    if op is Op.EQ:
        return actual == expected
    if op is Op.NE:
        return actual != expected
    if op is Op.GE:
        return actual >= expected
    if op is Op.LE:
        return actual <= expected
    if op is Op.GT:
        return actual > expected
    if op is Op.LT:
        return actual < expected
    raise ValueError(f"Not a comparison operator: {op}")


@dataclass(frozen=True)
class Condition:
    """Contrainte sur un seul champ de l'annonce."""
    field: str
    op: Op
    value: Any = None

    def matches(self, record: Any) -> bool:
        if self.op is Op.WITHIN_KM:
            lat, lng, radius_km = self.value
            rec_lat = getattr(record, "latitude", None)
            rec_lng = getattr(record, "longitude", None)
            if rec_lat is None or rec_lng is None:
                return False
            return geo_distance.distance_km(lat, lng, rec_lat, rec_lng) <= radius_km

        actual = getattr(record, self.field, None)

        if self.op is Op.IS_NULL:
            return actual is None
        if self.op is Op.NOT_NULL:
            return actual is not None
        if self.op is Op.SUPERSET:
            return set(self.value) <= set(actual or ())
        if actual is None:
            return False
        if self.op is Op.IN:
            return actual in self.value
        if self.op is Op.ICONTAINS:
            return str(self.value).lower() in str(actual).lower()
        if self.op is Op.LT_FIELD:
            other = getattr(record, self.value, None)
            return other is not None and actual < other
        return _compare(self.op, actual, self.value)


@dataclass(frozen=True)
class AnyOf:
    """Disjonction de clauses."""
    clauses: Tuple['Clause', ...]

    def matches(self, record: Any) -> bool:
        return any(clause.matches(record) for clause in self.clauses)


Clause = Union[Condition, AnyOf]


@dataclass(frozen=True)
class Predicate:
    """Conjonction immuable de clauses. Le prédicat vide accepte tout."""
    clauses: Tuple[Clause, ...] = ()

    def and_(self, *clauses: Clause) -> 'Predicate':
        return Predicate(self.clauses + tuple(clauses))

    def matches(self, record: Any) -> bool:
        return all(clause.matches(record) for clause in self.clauses)

    def fields(self) -> set:
        """Noms de champs référencés, contrôlés contre les colonnes avant compilation SQL."""
        names = set()
        stack = list(self.clauses)
        while stack:
            clause = stack.pop()
            if isinstance(clause, AnyOf):
                stack.extend(clause.clauses)
                continue
            names.add(clause.field)
            if clause.op is Op.LT_FIELD:
                names.add(clause.value)
            elif clause.op is Op.WITHIN_KM:
                names.update(("latitude", "longitude"))
        return names

    def __len__(self) -> int:
        return len(self.clauses)


# Raccourcis de construction

def eq(field: str, value: Any) -> Condition:
    return Condition(field, Op.EQ, value)


def ne(field: str, value: Any) -> Condition:
    return Condition(field, Op.NE, value)


def ge(field: str, value: Any) -> Condition:
    return Condition(field, Op.GE, value)


def le(field: str, value: Any) -> Condition:
    return Condition(field, Op.LE, value)


def gt(field: str, value: Any) -> Condition:
    return Condition(field, Op.GT, value)


def lt(field: str, value: Any) -> Condition:
    return Condition(field, Op.LT, value)


def between(field: str, low: Any, high: Any) -> Tuple[Condition, Condition]:
    return ge(field, low), le(field, high)


def is_in(field: str, values) -> Condition:
    return Condition(field, Op.IN, tuple(values))


def icontains(field: str, text: str) -> Condition:
    return Condition(field, Op.ICONTAINS, text)


def superset(field: str, values) -> Condition:
    return Condition(field, Op.SUPERSET, tuple(values))


def is_null(field: str) -> Condition:
    return Condition(field, Op.IS_NULL)


def not_null(field: str) -> Condition:
    return Condition(field, Op.NOT_NULL)


def lt_field(field: str, other_field: str) -> Condition:
    return Condition(field, Op.LT_FIELD, other_field)


def within_km(latitude: float, longitude: float, radius_km: float) -> Condition:
    """Distance de Haversine exacte entre l'annonce et le point <= radius_km."""
    return Condition("latitude", Op.WITHIN_KM, (latitude, longitude, radius_km))
