from mentacare.query import (
    AGE_BUCKETS,
    EXPERIENCE_BUCKETS,
    bucket,
    bucket_label,
    build_filter_spec,
    equals,
    membership,
    parse_bool,
    substring,
)

THERAPIST_FIELDS = {
    "specialization": equals("specialization"),
    "isVerified": equals("isVerified", parse_bool),
    "keyword": substring("name", "email", "bio"),
    "experience": bucket("experience", EXPERIENCE_BUCKETS),
}

ROWS = [
    {"id": "a", "name": "Ada", "experience": 1},
    {"id": "b", "name": "Ben", "experience": 4},
    {"id": "c", "name": "Cy", "experience": 7},
    {"id": "d", "name": "Di", "experience": 11},
]


def _ids(rows):
    return [row["id"] for row in rows]


def test_experience_buckets_select_expected_rows():
    six_to_ten = build_filter_spec({"experience": "6-10"}, THERAPIST_FIELDS)
    ten_plus = build_filter_spec({"experience": "10+"}, THERAPIST_FIELDS)

    assert _ids(six_to_ten.apply(ROWS)) == ["c"]
    assert _ids(ten_plus.apply(ROWS)) == ["d"]


def test_experience_bucket_boundaries():
    assert bucket_label(0, EXPERIENCE_BUCKETS) == "0-2"
    assert bucket_label(2, EXPERIENCE_BUCKETS) == "0-2"
    assert bucket_label(10, EXPERIENCE_BUCKETS) == "6-10"
    assert bucket_label(10.5, EXPERIENCE_BUCKETS) == "10+"
    assert bucket_label(None, EXPERIENCE_BUCKETS) is None
    assert bucket_label("7", EXPERIENCE_BUCKETS) is None


def test_age_buckets():
    assert bucket_label(17, AGE_BUCKETS) == "Under 18"
    assert bucket_label(18, AGE_BUCKETS) == "18-29"
    assert bucket_label(29, AGE_BUCKETS) == "18-29"
    assert bucket_label(30, AGE_BUCKETS) == "30-49"
    assert bucket_label(64, AGE_BUCKETS) == "50-64"
    assert bucket_label(65, AGE_BUCKETS) == "65+"


def test_equality_filters_are_pushed_down():
    spec = build_filter_spec(
        {"specialization": "CBT", "isVerified": "true"},
        THERAPIST_FIELDS,
        base={"role": "professional"},
    )
    assert spec.store_filters == {"role": "professional", "specialization": "CBT", "isVerified": True}
    assert spec.residual == []


def test_all_and_empty_values_are_ignored():
    spec = build_filter_spec({"specialization": "all", "keyword": "  ", "experience": ""}, THERAPIST_FIELDS)
    assert spec.store_filters == {}
    assert spec.apply(ROWS) == ROWS


def test_boolean_parsing_only_accepts_true():
    spec = build_filter_spec({"isVerified": "yes"}, THERAPIST_FIELDS)
    assert spec.store_filters == {"isVerified": False}


def test_unknown_bucket_label_is_ignored():
    spec = build_filter_spec({"experience": "20-30"}, THERAPIST_FIELDS)
    assert spec.residual == []


def test_keyword_is_case_insensitive_over_several_fields():
    rows = [
        {"id": "1", "name": "Dr. Grace", "email": "grace@x.org", "bio": None},
        {"id": "2", "name": "Dr. Hal", "email": "hal@x.org", "bio": "Works with GRIEF"},
        {"id": "3", "name": "Dr. Ivy", "email": "ivy@x.org"},
    ]
    spec = build_filter_spec({"keyword": "gr"}, THERAPIST_FIELDS)
    assert _ids(spec.apply(rows)) == ["1", "2"]


def test_residual_predicates_combine_with_and():
    rows = [
        {"id": "1", "name": "Ann", "experience": 7},
        {"id": "2", "name": "Bob", "experience": 7},
        {"id": "3", "name": "Ann", "experience": 1},
    ]
    spec = build_filter_spec({"keyword": "ann", "experience": "6-10"}, THERAPIST_FIELDS)
    assert _ids(spec.apply(rows)) == ["1"]


def test_membership_filter_splits_lists():
    spec = build_filter_spec({"status": "upcoming, missed"}, {"status": membership("status")})
    assert spec.store_filters == {"status": ("in", ["upcoming", "missed"])}
