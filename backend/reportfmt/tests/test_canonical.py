from ..services.canonical import CanonicalIdentity, CanonicalParam, canonicalize, params_from_specs
from ..services.params import ParamSpec


def test_canonical_form_layout():
    identity = CanonicalIdentity("u-1", "txt", "text/plain", global_=True)
    payload = canonicalize(
        identity,
        [("generate", b"#!/bin/sh\n")],
        [
            CanonicalParam(
                name="rows",
                type_name="integer",
                fallback="5",
                type_min=1,
                type_max=100,
            ),
            CanonicalParam(
                name="style",
                type_name="selection",
                fallback="a",
                options=("a", "b"),
            ),
        ],
    )
    assert payload == (
        b"u-1txttext/plain1"
        b"generateIyEvYmluL3NoCg=="
        b"rowsinteger11005"
        b"styleselectionaab"
        b"\n"
    )


def test_files_are_ordered_by_name_bytes():
    identity = CanonicalIdentity("u-1", "", "")
    forward = canonicalize(identity, [("B", b"1"), ("a", b"2"), ("C", b"3")], [])
    reverse = canonicalize(identity, [("C", b"3"), ("a", b"2"), ("B", b"1")], [])
    assert forward == reverse
    assert forward == b"u-10BMQ==CMw==aMg==\n"


def test_unset_bounds_are_omitted():
    identity = CanonicalIdentity("u-1", "", "")
    with_bounds = canonicalize(identity, [], params_from_specs([ParamSpec("n", "integer", "1", "1", "0", "9")]))
    without = canonicalize(identity, [], params_from_specs([ParamSpec("n", "integer", "1", "1")]))
    assert with_bounds == b"u-10ninteger091\n"
    assert without == b"u-10ninteger1\n"
