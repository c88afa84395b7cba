import pytest

from models import CatalogEntry, NameContains, NameOrDescriptionContainsAny


class FakeCatalog:
    """In-memory catalog with the search_catalog(predicate, limit) signature."""

    def __init__(self, entries, error=None):
        self.entries = list(entries)
        self.error = error
        self.calls = []

    def __call__(self, predicate, limit):
        self.calls.append((predicate, limit))
        if self.error is not None:
            raise self.error

        if isinstance(predicate, NameContains):
            term = predicate.term.lower()
            found = [e for e in self.entries if term in e.name.lower()]
        elif isinstance(predicate, NameOrDescriptionContainsAny):
            terms = [t.lower() for t in predicate.terms]
            found = [
                e for e in self.entries
                if any(t in e.name.lower() or t in (e.description or '').lower() for t in terms)
            ]
        else:
            raise TypeError(predicate)
        return found[:limit]


def entry(id, name, description=None, **kwargs):
    return CatalogEntry(id=id, name=name, description=description, **kwargs)


@pytest.fixture
def catalog():
    return FakeCatalog([
        entry('a1', 'Filtre à huile Bosch', 'Filtre à huile pour moteur diesel'),
        entry('a2', 'Plaquette de frein', 'Plaquettes de frein avant céramique'),
        entry('a3', 'Disque de frein ventilé', 'Disque de frein avant 280mm'),
        entry('a4', 'Bougie d\'allumage', 'Bougie iridium longue durée'),
        entry('a5', 'Filtre à air', 'Filtre à air moteur essence'),
    ])
