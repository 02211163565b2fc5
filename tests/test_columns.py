import asyncio

from intune_compliance_report.report.columns import (
    build_row,
    build_rows,
    discover_columns,
    flatten_device,
    resolve_setting_name,
)
from intune_compliance_report.report.models import IDENTITY_COLUMNS, SENTINEL, SettingState

from conftest import FakeComplianceSource, device, setting


def test_resolve_setting_name_prefers_primary_field():
    assert resolve_setting_name(SettingState(setting_name="BitLocker", setting="Encryption")) == "BitLocker"


def test_resolve_setting_name_falls_back_to_setting():
    assert resolve_setting_name(SettingState(setting_name=None, setting="Encryption")) == "Encryption"
    assert resolve_setting_name(SettingState(setting_name="", setting="Encryption")) == "Encryption"


def test_resolve_setting_name_none_when_both_absent():
    assert resolve_setting_name(SettingState(state="compliant")) is None


def test_two_device_scenario(fleet_ab):
    devices, policies = fleet_ab
    source = FakeComplianceSource(devices, policies)

    columns = asyncio.run(discover_columns(source, devices))
    assert columns == ["BitLocker", "Firewall"]

    rows = asyncio.run(build_rows(source, devices, columns))
    assert rows[0].settings == {"BitLocker": "compliant", "Firewall": "none"}
    assert rows[1].settings == {"BitLocker": "error", "Firewall": "compliant"}


def test_columns_are_sorted_and_deduplicated():
    devices = [device("A"), device("B")]
    policies = {
        "A": [("p1", [setting("Zeta", "compliant"), setting("Alpha", "compliant")])],
        "B": [
            ("p1", [setting("Alpha", "error")]),
            ("p2", [setting("Mid", "compliant"), setting("Zeta", "error")]),
        ],
    }
    source = FakeComplianceSource(devices, policies)

    assert asyncio.run(discover_columns(source, devices)) == ["Alpha", "Mid", "Zeta"]


def test_column_order_is_case_sensitive():
    devices = [device("A")]
    policies = {"A": [("p1", [setting("antivirus", "compliant"), setting("Firewall", "compliant")])]}
    source = FakeComplianceSource(devices, policies)

    assert asyncio.run(discover_columns(source, devices)) == ["Firewall", "antivirus"]


def test_device_without_resolvable_names_contributes_nothing(fleet_ab):
    devices, policies = fleet_ab
    devices = devices + [device("C")]
    policies["C"] = [("p9", [SettingState(state="compliant"), SettingState(state="error")])]
    source = FakeComplianceSource(devices, policies)

    columns = asyncio.run(discover_columns(source, devices))
    assert columns == ["BitLocker", "Firewall"]

    row = asyncio.run(build_row(source, devices[2], columns))
    assert row.settings == {"BitLocker": SENTINEL, "Firewall": SENTINEL}


def test_discovery_failure_is_isolated(fleet_ab, caplog):
    devices, policies = fleet_ab
    devices = devices + [device("D")]
    policies["D"] = [("p1", [setting("SecureBoot", "compliant")])]
    source = FakeComplianceSource(devices, policies, fail_devices={"D"})
    warnings = []

    columns = asyncio.run(discover_columns(source, devices, on_warning=warnings.append))

    assert columns == ["BitLocker", "Firewall"]
    assert len(warnings) == 1
    assert "PC-D" in warnings[0]
    assert "PC-D" in caplog.text


def test_discovery_failure_then_successful_row_fetch(fleet_ab):
    devices, policies = fleet_ab
    devices = devices + [device("D")]
    policies["D"] = [("p1", [setting("BitLocker", "compliant"), setting("SecureBoot", "compliant")])]
    source = FakeComplianceSource(devices, policies, fail_discovery_only={"D"})

    columns = asyncio.run(discover_columns(source, devices))
    rows = asyncio.run(build_rows(source, devices, columns))

    # SecureBoot was only visible on D, which failed discovery
    assert columns == ["BitLocker", "Firewall"]
    assert rows[2].settings == {"BitLocker": "compliant", "Firewall": SENTINEL}
    assert list(rows[2].to_dict()) == IDENTITY_COLUMNS + columns


def test_row_failure_keeps_identity_and_sentinels(fleet_ab):
    devices, policies = fleet_ab
    source = FakeComplianceSource(devices, policies, fail_devices={"B"})
    warnings = []

    row = asyncio.run(build_row(source, devices[1], ["BitLocker", "Firewall"], on_warning=warnings.append))

    assert row.identity["DeviceId"] == "B"
    assert row.identity["DeviceName"] == "PC-B"
    assert row.settings == {"BitLocker": SENTINEL, "Firewall": SENTINEL}
    assert len(warnings) == 1


def test_fault_isolation_leaves_other_rows_unchanged(fleet_ab):
    devices, policies = fleet_ab
    devices = devices + [device("E")]
    policies["E"] = [("p1", [setting("Firewall", "error")])]

    healthy = FakeComplianceSource(devices, policies)
    columns = asyncio.run(discover_columns(healthy, devices))
    expected = asyncio.run(build_rows(healthy, devices, columns))

    broken = FakeComplianceSource(devices, policies, fail_devices={"E"})
    broken_columns = asyncio.run(discover_columns(broken, devices))
    rows = asyncio.run(build_rows(broken, devices, broken_columns))

    assert broken_columns == columns
    assert len(rows) == len(devices)
    assert [r.to_dict() for r in rows[:2]] == [r.to_dict() for r in expected[:2]]
    assert rows[2].settings == {"BitLocker": SENTINEL, "Firewall": SENTINEL}


def test_duplicate_setting_last_policy_wins():
    dev = device("A")
    settings = [setting("BitLocker", "error"), setting("BitLocker", "compliant")]

    row = flatten_device(dev, ["BitLocker"], settings)

    assert row.settings["BitLocker"] == "compliant"


def test_names_outside_column_set_are_dropped():
    row = flatten_device(device("A"), ["BitLocker"], [setting("Firewall", "compliant")])

    assert row.settings == {"BitLocker": SENTINEL}


def test_null_state_reads_as_sentinel():
    row = flatten_device(device("A"), ["BitLocker"], [setting("BitLocker", None)])

    assert row.settings == {"BitLocker": SENTINEL}


def test_every_row_has_identical_keys(fleet_ab):
    devices, policies = fleet_ab
    source = FakeComplianceSource(devices, policies)
    columns = asyncio.run(discover_columns(source, devices))

    rows = asyncio.run(build_rows(source, devices, columns))

    keys = {tuple(r.to_dict()) for r in rows}
    assert keys == {tuple(IDENTITY_COLUMNS + columns)}


def test_concurrent_rows_keep_listing_order():
    devices = [device(f"D{i:02d}") for i in range(25)]
    policies = {d.id: [("p1", [setting("BitLocker", d.id)])] for d in devices}
    source = FakeComplianceSource(devices, policies)

    columns = asyncio.run(discover_columns(source, devices, concurrency=8))
    rows = asyncio.run(build_rows(source, devices, columns, concurrency=8))

    assert [r.identity["DeviceId"] for r in rows] == [d.id for d in devices]
    assert [r.settings["BitLocker"] for r in rows] == [d.id for d in devices]


def test_repeated_runs_are_identical(fleet_ab):
    devices, policies = fleet_ab

    def run():
        source = FakeComplianceSource(devices, policies)
        columns = asyncio.run(discover_columns(source, devices))
        return columns, [r.to_dict() for r in asyncio.run(build_rows(source, devices, columns))]

    assert run() == run()


def test_each_pass_fetches_independently(fleet_ab):
    devices, policies = fleet_ab
    source = FakeComplianceSource(devices, policies)

    columns = asyncio.run(discover_columns(source, devices))
    asyncio.run(build_rows(source, devices, columns))

    assert source.policy_calls == {"A": 2, "B": 2}


def test_setting_named_like_identity_column_is_prefixed():
    devices = [device("A")]
    policies = {"A": [("p1", [setting("DeviceName", "compliant"), setting("BitLocker", "error")])]}
    source = FakeComplianceSource(devices, policies)

    columns = asyncio.run(discover_columns(source, devices))
    row = asyncio.run(build_row(source, devices[0], columns))

    assert columns == ["BitLocker", "Setting.DeviceName"]
    assert row.identity["DeviceName"] == "PC-A"
    assert row.to_dict()["DeviceName"] == "PC-A"
    assert row.to_dict()["Setting.DeviceName"] == "compliant"
    assert list(row.to_dict()) == IDENTITY_COLUMNS + columns


def test_identity_clash_keeps_csv_rectangular(tmp_path):
    import csv

    from intune_compliance_report.report import generate_report
    from intune_compliance_report.reporting import export_csv

    devices = [device("A"), device("B")]
    policies = {
        "A": [("p1", [setting(None, "compliant", fallback="DeviceId")])],
        "B": [("p1", [setting("Firewall", "compliant")])],
    }
    report = asyncio.run(generate_report(FakeComplianceSource(devices, policies)))

    with open(export_csv(report, tmp_path / "r.csv"), newline="", encoding="utf-8") as fh:
        rows = list(csv.reader(fh))

    assert rows[0] == IDENTITY_COLUMNS + ["Firewall", "Setting.DeviceId"]
    assert len(set(rows[0])) == len(rows[0])
    assert rows[1][2] == "A"
    assert rows[1][-1] == "compliant"
    assert rows[2][-1] == SENTINEL
