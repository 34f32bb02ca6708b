"""Repository / hosting-project naming tests."""

from __future__ import annotations

import itertools

import pytest

from deploy_plane.app.deployments.naming import (
    EMPTY_SLUG,
    derive_repo_name,
    hosting_project_name,
    is_valid_name,
    repo_name_from_url,
    slugify_organization,
)


def _counter_tokens():
    counter = itertools.count(1_700_000_000_000)
    return lambda: str(next(counter))


class TestSlugify:
    def test_lowercases_and_collapses_runs(self):
        assert slugify_organization('Acme  Corp!!') == 'acme-corp'

    def test_trims_leading_and_trailing_hyphens(self):
        assert slugify_organization('--Hello, World--') == 'hello-world'

    def test_truncates_then_retrims(self):
        slug = slugify_organization('abcd efgh', max_length=5)
        assert slug == 'abcd'

    def test_non_ascii_only_becomes_placeholder(self):
        assert slugify_organization('日本語') == EMPTY_SLUG
        assert slugify_organization('!!!') == EMPTY_SLUG

    def test_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            slugify_organization('acme', max_length=0)


class TestDeriveRepoName:
    def test_shape(self):
        name = derive_repo_name('Acme Corp!!', token_factory=lambda: '1700000000000')
        assert name == 'landing-acme-corp-1700000000000'
        assert is_valid_name(name)

    def test_two_calls_yield_different_valid_names(self):
        tokens = _counter_tokens()
        first = derive_repo_name('Acme Corp!!', token_factory=tokens)
        second = derive_repo_name('Acme Corp!!', token_factory=tokens)
        assert first != second
        assert is_valid_name(first)
        assert is_valid_name(second)

    def test_default_token_is_a_millisecond_timestamp(self):
        name = derive_repo_name('Acme')
        token = name.rsplit('-', 1)[-1]
        assert token.isdigit()
        assert len(token) >= 13

    def test_slug_length_is_bounded(self):
        name = derive_repo_name('x' * 500, token_factory=lambda: '1')
        assert name == f"landing-{'x' * 50}-1"

    def test_custom_prefix(self):
        name = derive_repo_name('Acme', prefix='site', token_factory=lambda: '7')
        assert name == 'site-acme-7'

    def test_untokenizable_factory_is_rejected(self):
        with pytest.raises(ValueError):
            derive_repo_name('Acme', token_factory=lambda: '---')


class TestHostingName:
    def test_derived_repo_names_map_to_themselves(self):
        name = derive_repo_name('Acme Corp', token_factory=lambda: '42')
        assert hosting_project_name(name) == name

    def test_normalizes_foreign_names(self):
        assert hosting_project_name('My_Repo.v2') == 'my-repo-v2'

    def test_repo_name_recovered_from_url(self):
        url = 'https://github.com/acme-bot/landing-acme-42'
        assert repo_name_from_url(url) == 'landing-acme-42'
        assert repo_name_from_url(url + '/') == 'landing-acme-42'
        assert repo_name_from_url(url + '.git') == 'landing-acme-42'

    def test_repo_url_without_name_is_rejected(self):
        with pytest.raises(ValueError):
            repo_name_from_url('')
