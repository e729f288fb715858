"""
Tests for the enrichment quality gate.
"""

import pytest

from app.models.domain.enrichment_domain import CompanyProfile, Confidence
from app.services.enrichment.quality_gate import (
    PASS_THRESHOLD,
    confidence_from_score,
    score_profile,
)


def _candidate(**overrides):
    data = {
        "companyDescription": "x" * 400,
        "products": [f"p{i}" for i in range(6)],
        "services": [],
        "uniqueSellingPoints": [f"u{i}" for i in range(6)],
        "competitors": ["a", "b", "c", "d"],
        "callAngles": [],
        "objectionHandling": [],
        "targetAudience": "t" * 150,
    }
    data.update(overrides)
    return data


def test_empty_candidate_scores_zero():
    report = score_profile(None)

    assert report.score == 0
    assert report.passed is False
    assert report.confidence == Confidence.LOW


def test_rich_candidate_without_services_scores_six():
    report = score_profile(_candidate())

    assert report.score == 6
    assert report.passed is True
    assert report.confidence == Confidence.MEDIUM
    assert report.breakdown["companyDescription"] == 2
    assert "services" not in report.breakdown


def test_three_services_push_score_to_high_confidence():
    report = score_profile(_candidate(services=["s1", "s2", "s3"]))

    assert report.score == 7
    assert report.confidence == Confidence.HIGH


def test_medium_description_earns_one_point():
    report = score_profile({"companyDescription": "d" * 150})

    assert report.breakdown == {"companyDescription": 1}
    assert report.score == 1


def test_short_lists_earn_nothing():
    report = score_profile(
        {
            "products": ["a", "b", "c", "d"],
            "services": ["a", "b"],
            "competitors": ["a", "b"],
            "targetAudience": "short",
        }
    )

    assert report.score == 0
    assert report.passed is False


def test_non_list_values_are_ignored():
    report = score_profile({"products": "p1, p2, p3, p4, p5", "companyDescription": 12345})

    assert report.score == 0


def test_full_playbook_scores_nine():
    report = score_profile(
        _candidate(
            services=["s1", "s2", "s3"],
            callAngles=[f"c{i}" for i in range(5)],
            objectionHandling=[{"objection": "o", "response": "r"}] * 5,
        )
    )

    assert report.score == 9
    assert report.passed is True


def test_scores_company_profile_instances():
    profile = CompanyProfile(
        company_description="x" * 320,
        products=[f"p{i}" for i in range(5)],
        competitors=["a", "b", "c"],
    )

    report = score_profile(profile)

    assert report.score == 4
    assert report.passed is True


@pytest.mark.parametrize(
    "score,expected",
    [
        (0, Confidence.LOW),
        (3, Confidence.LOW),
        (4, Confidence.MEDIUM),
        (6, Confidence.MEDIUM),
        (7, Confidence.HIGH),
        (10, Confidence.HIGH),
    ],
)
def test_confidence_thresholds(score, expected):
    assert confidence_from_score(score) == expected


def test_pass_threshold_is_four():
    assert PASS_THRESHOLD == 4
    assert score_profile({"companyDescription": "x" * 300, "products": list("abcde")}).passed is False
    assert score_profile(
        {"companyDescription": "x" * 300, "products": list("abcde"), "services": list("abc")}
    ).passed is True
