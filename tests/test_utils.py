from __future__ import annotations

from zenix.utils import build_cache_key, slugify, split_endpoint, stable_serialize


def test_slugify_normalises_names() -> None:
    assert slugify("Science Fiction") == "science-fiction"
    assert slugify("  Crème brûlée!! ") == "creme-brulee"
    assert slugify("") == ""


def test_stable_serialize_sorts_and_drops_none() -> None:
    assert stable_serialize({"b": 2, "a": 1, "c": None}) == '{"a":1,"b":2}'
    assert stable_serialize({}) == ""
    assert stable_serialize(None) == ""
    assert stable_serialize({"only": None}) == ""


def test_build_cache_key_without_params_is_identity() -> None:
    assert build_cache_key("/genre/movie/list") == "/genre/movie/list"
    assert build_cache_key("/search/multi", {"query": "alien", "page": 1}) == (
        '/search/multi-{"page":1,"query":"alien"}'
    )


def test_split_endpoint_merges_query_string() -> None:
    path, params = split_endpoint("/discover/movie?with_genres=27&page=3", {"page": 1, "sort_by": "x"})

    assert path == "discover/movie"
    # Values embedded in the endpoint win over explicit ones.
    assert params == {"page": "3", "sort_by": "x", "with_genres": "27"}


def test_split_endpoint_without_query() -> None:
    assert split_endpoint("movie/550", None) == ("movie/550", {})
