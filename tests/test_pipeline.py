from caresync.models.glucose import ReadingSource
from caresync.providers.share import parse_share_record
from caresync.utils.error_handling import ErrorSeverity
from caresync.utils.pipeline import ReadingPipeline


def make_pipeline():
    return ReadingPipeline(lambda r: parse_share_record(r, "owner1"), "share")


def test_pipeline_valid_records():
    readings, errors = make_pipeline().process([
        {"WT": "Date(1717243200000)", "Value": 120, "Trend": "Flat"},
        {"WT": "Date(1717243500000)", "Value": 125, "Trend": "FortyFiveUp"},
    ])
    assert not errors.has_errors()
    assert [r.value for r in readings] == [120, 125]
    assert all(r.source == ReadingSource.SHARE and r.user_id == "owner1" for r in readings)


def test_pipeline_skips_malformed_records():
    readings, errors = make_pipeline().process([
        {"WT": "Date(1717243200000)", "Value": None},
        {"WT": "garbage", "Value": 120},
        {"WT": "Date(1717243200000)", "Value": 15},
        {"WT": "Date(1717243200000)", "Value": 650},
        {"WT": "Date(1717243800000)", "Value": 130},
    ])
    assert [r.value for r in readings] == [130]
    errors_list = errors.get_errors()
    assert len(errors_list) == 4
    assert errors_list[0]["field"] == "Value"
    assert errors_list[1]["field"] == "WT"
    assert all(e["severity"] == ErrorSeverity.LOW.value for e in errors_list)
    assert errors_list[2]["message"].startswith("Record 2")
