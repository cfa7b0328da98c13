import pytest

from fetcher.errors import RequestValidationError, ValidationReason
from fetcher.identity import RunIdentity, SteamId, parse_run_identity, validate_map_name


def _reason(run_id, map_name, unique_id) -> ValidationReason:
    with pytest.raises(RequestValidationError) as exc_info:
        parse_run_identity(run_id, map_name, unique_id)
    return exc_info.value.reason


class TestParseRunIdentity:
    def test_valid_request(self):
        identity = parse_run_identity("42", "kz_helix", "STEAM_0:1:12345678")

        assert identity == RunIdentity(
            run_id="42",
            map_name="kz_helix",
            steam_id=SteamId(universe="0", auth_server="1", account_number="12345678"),
        )

    def test_derived_names(self):
        identity = parse_run_identity("42", "kz_helix", "STEAM_0:1:12345678")

        assert identity.replay_prefix == "kz_helix_0_1_12345678_pure"
        assert identity.replay_filename == "kz_helix_0_1_12345678_pure_42.dat"
        assert identity.remote_replay_name == "kz_helix_0_1_12345678_pure.dat"

    def test_run_id_leading_zeros_kept(self):
        identity = parse_run_identity("007", "kz_a", "STEAM_1:0:5")
        assert identity.replay_filename == "kz_a_1_0_5_pure_007.dat"

    def test_map_name_with_brackets_and_dash(self):
        identity = parse_run_identity("1", "[kz]-cave_v2", "STEAM_0:0:1")
        assert identity.replay_prefix == "[kz]-cave_v2_0_0_1_pure"

    @pytest.mark.parametrize(
        ("run_id", "map_name", "unique_id"),
        [
            ("", "kz_helix", "STEAM_0:1:1"),
            ("1", "", "STEAM_0:1:1"),
            ("1", "kz_helix", ""),
            (None, "kz_helix", "STEAM_0:1:1"),
            ("1", None, None),
        ],
    )
    def test_missing_field(self, run_id, map_name, unique_id):
        assert _reason(run_id, map_name, unique_id) is ValidationReason.MISSING_FIELD

    @pytest.mark.parametrize("run_id", ["-1", "1.5", "abc", "12a", " 12", "12\n", "١٢"])
    def test_invalid_id(self, run_id):
        assert _reason(run_id, "kz_helix", "STEAM_0:1:1") is ValidationReason.INVALID_ID

    @pytest.mark.parametrize(
        "map_name",
        ["../etc/passwd", "kz/helix", "kz helix", "kz.helix", "kz;rm -rf", "kz_helix\n", "kz%2Fhelix", "kz\\helix"],
    )
    def test_invalid_map_name(self, map_name):
        assert _reason("1", map_name, "STEAM_0:1:1") is ValidationReason.INVALID_MAP_NAME

    @pytest.mark.parametrize(
        "unique_id",
        [
            "STEAM_9:1:123",
            "STEAM_0:2:123",
            "STEAM_0:1:",
            "STEAM_0:1:12a",
            "steam_0:1:123",
            "STEAM_0:1:123:4",
            "STEAM_0:1:123\n",
            "[U:1:123]",
        ],
    )
    def test_invalid_unique_id(self, unique_id):
        assert _reason("1", "kz_helix", unique_id) is ValidationReason.INVALID_UNIQUE_ID

    def test_checks_short_circuit_in_order(self):
        # Every field is bad; the id check comes first.
        assert _reason("x", "../x", "STEAM_9:9:9") is ValidationReason.INVALID_ID
        assert _reason("1", "../x", "STEAM_9:9:9") is ValidationReason.INVALID_MAP_NAME

    def test_error_message_is_client_facing(self):
        with pytest.raises(RequestValidationError, match="Invalid uniqueId format") as exc_info:
            parse_run_identity("1", "kz_helix", "STEAM_9:1:123")
        assert exc_info.value.message == "Invalid uniqueId format"


class TestStaleReplayPattern:
    def test_matches_every_version_of_the_prefix(self):
        pattern = parse_run_identity("42", "kz_helix", "STEAM_0:1:12345678").stale_replay_pattern

        assert pattern.fullmatch("kz_helix_0_1_12345678_pure_42.dat")
        assert pattern.fullmatch("kz_helix_0_1_12345678_pure_7.dat")

    def test_ignores_other_prefixes_and_temp_files(self):
        pattern = parse_run_identity("42", "kz_helix", "STEAM_0:1:12345678").stale_replay_pattern

        assert not pattern.fullmatch("kz_helix_0_1_123456789_pure_7.dat")
        assert not pattern.fullmatch("kz_helix2_0_1_12345678_pure_7.dat")
        assert not pattern.fullmatch(".kz_helix_0_1_12345678_pure_7.dat.abc.part")
        assert not pattern.fullmatch("kz_helix_0_1_12345678_pure_7.dat.bak")

    def test_brackets_are_literal(self):
        pattern = parse_run_identity("1", "[kz]cave", "STEAM_0:0:1").stale_replay_pattern

        assert pattern.fullmatch("[kz]cave_0_0_1_pure_3.dat")
        assert not pattern.fullmatch("kcave_0_0_1_pure_3.dat")


class TestValidateMapName:
    def test_returns_valid_name(self):
        assert validate_map_name("bkz_goldbhop") == "bkz_goldbhop"

    def test_rejects_traversal(self):
        with pytest.raises(RequestValidationError) as exc_info:
            validate_map_name("../../secret")
        assert exc_info.value.reason is ValidationReason.INVALID_MAP_NAME
