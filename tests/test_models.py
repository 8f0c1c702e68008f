"""Tests for backend response normalization and bundle splitting."""

import pytest

from solrelay.bundles.models import (
    LUT_ACTIVATION_DELAY,
    BundleError,
    BundleResult,
    ErrorKind,
    OperationResult,
    RelayEnvelope,
    ResponseShape,
    TransactionBundle,
    normalize_bundle_response,
    split_large_bundles,
)
from solrelay.errors import ProtocolError


class TestNormalizeBundleResponse:
    """Tests for normalize_bundle_response."""

    def test_nested_bundles(self):
        """Test data.bundles with list and object entries."""
        prepared = normalize_bundle_response(
            {"success": True, "data": {"bundles": [["tx1", "tx2"], {"transactions": ["tx3"]}]}}
        )

        assert prepared.shape == ResponseShape.NESTED_BUNDLES
        assert [b.transactions for b in prepared.bundles] == [["tx1", "tx2"], ["tx3"]]
        assert [b.critical for b in prepared.bundles] == [True, False]

    def test_nested_transactions(self):
        """Test data.transactions as a single bundle."""
        prepared = normalize_bundle_response({"success": True, "data": {"transactions": ["a", "b"]}})

        assert prepared.shape == ResponseShape.NESTED_TRANSACTIONS
        assert len(prepared.bundles) == 1
        assert prepared.bundles[0].critical is True

    def test_top_level_bundles(self):
        """Test bundles at the top level."""
        prepared = normalize_bundle_response({"bundles": [{"transactions": ["a"]}, ["b"]]})

        assert prepared.shape == ResponseShape.BUNDLES
        assert [b.transactions for b in prepared.bundles] == [["a"], ["b"]]

    def test_top_level_transactions(self):
        """Test transactions at the top level."""
        prepared = normalize_bundle_response({"transactions": ["a", "b", "c"]})

        assert prepared.shape == ResponseShape.TRANSACTIONS
        assert prepared.bundles[0].transactions == ["a", "b", "c"]

    def test_bare_list(self):
        """Test a bare array of encoded transactions."""
        prepared = normalize_bundle_response(["a", "b"])

        assert prepared.shape == ResponseShape.RAW_LIST
        assert prepared.bundles[0].transactions == ["a", "b"]
        assert prepared.bundles[0].critical is True

    def test_nested_wins_over_top_level(self):
        """Test that data.bundles takes precedence over top-level fields."""
        prepared = normalize_bundle_response(
            {"bundles": [["top"]], "transactions": ["flat"], "data": {"bundles": [["nested"]]}}
        )

        assert prepared.bundles[0].transactions == ["nested"]

    def test_stages_are_all_critical(self):
        """Test that every deployment stage is critical and named."""
        prepared = normalize_bundle_response(
            {
                "success": True,
                "data": {
                    "stages": [
                        {
                            "name": "lut",
                            "transactions": ["t1"],
                            "requiresConfirmation": True,
                            "waitForActivation": True,
                        },
                        {"name": "pool", "transactions": ["t2", "t3"]},
                    ],
                    "mint": "MintAddr",
                    "poolId": "PoolAddr",
                    "mintPrivateKey": "secret",
                },
            }
        )

        assert prepared.shape == ResponseShape.STAGES
        assert [b.name for b in prepared.bundles] == ["lut", "pool"]
        assert all(b.critical for b in prepared.bundles)
        assert prepared.bundles[0].settle_delay == LUT_ACTIVATION_DELAY
        assert prepared.bundles[1].settle_delay == 0.0
        assert prepared.metadata == {"mint": "MintAddr", "pool_id": "PoolAddr"}
        assert prepared.extra_signer_key == "secret"

    def test_error_flag_raises(self):
        """Test that success: false is a protocol error."""
        with pytest.raises(ProtocolError, match="pool not found"):
            normalize_bundle_response({"success": False, "error": "pool not found"})

    def test_no_transactions_raises(self):
        """Test that an unrecognized shape is a protocol error."""
        with pytest.raises(ProtocolError, match="No transactions returned"):
            normalize_bundle_response({"success": True, "data": {}})

    def test_non_string_list_raises(self):
        """Test that a bare list must contain strings."""
        with pytest.raises(ProtocolError):
            normalize_bundle_response([1, 2])

    def test_wrong_types_raise(self):
        """Test that a malformed field is a protocol error."""
        with pytest.raises(ProtocolError):
            normalize_bundle_response({"transactions": "not-a-list"})

    def test_unexpected_payload_type(self):
        """Test that scalars are rejected."""
        with pytest.raises(ProtocolError):
            normalize_bundle_response("tx")


class TestSplitLargeBundles:
    """Tests for split_large_bundles."""

    def test_small_bundles_unchanged(self):
        """Test that bundles within the limit pass through."""
        bundles = [TransactionBundle(["a", "b"], critical=True)]

        assert split_large_bundles(bundles) == bundles

    def test_splits_preserving_order(self):
        """Test that a 12-transaction bundle becomes 5 + 5 + 2 in order."""
        txs = [f"tx{i}" for i in range(12)]
        bundles = [TransactionBundle(txs, critical=True), TransactionBundle(["next"])]

        result = split_large_bundles(bundles)

        assert [len(b) for b in result] == [5, 5, 2, 1]
        assert [tx for b in result for tx in b.transactions] == txs + ["next"]
        assert [b.critical for b in result] == [True, False, False, False]

    def test_settle_delay_on_last_chunk(self):
        """Test that a split stage waits only after its final chunk."""
        bundles = [TransactionBundle([f"t{i}" for i in range(7)], name="lut", critical=True, settle_delay=5.0)]

        result = split_large_bundles(bundles)

        assert [b.settle_delay for b in result] == [0.0, 5.0]
        assert [b.name for b in result] == ["lut (1/2)", "lut (2/2)"]

    def test_empty_bundles_dropped(self):
        """Test that empty bundles are removed."""
        result = split_large_bundles([TransactionBundle([]), TransactionBundle(["a"])])

        assert [b.transactions for b in result] == [["a"]]

    def test_custom_max_size(self):
        """Test splitting with a smaller limit."""
        result = split_large_bundles([TransactionBundle(["a", "b", "c"])], max_size=2)

        assert [b.transactions for b in result] == [["a", "b"], ["c"]]


class TestRelayEnvelope:
    """Tests for the send response model."""

    @pytest.mark.parametrize(
        "result,expected",
        [
            ({"jito": "abc"}, "abc"),
            ({"bundleId": "def"}, "def"),
            ("plain-id", "plain-id"),
            ({}, None),
            (None, None),
        ],
    )
    def test_relay_id(self, result, expected):
        """Test relay id extraction from the known result layouts."""
        envelope = RelayEnvelope(success=True, result=result)

        assert envelope.relay_id == expected


class TestOperationResult:
    """Tests for the operation summary."""

    def test_to_dict(self):
        """Test JSON-friendly conversion."""
        result = OperationResult(
            success=True,
            total_bundles=2,
            success_count=1,
            failure_count=1,
            per_bundle_results=[
                BundleResult(index=0, success=True, relay_id="r0", attempts=2),
                BundleResult(
                    index=1,
                    success=False,
                    error=BundleError(ErrorKind.NETWORK, "HTTP error 502"),
                    attempts=1,
                ),
            ],
        )

        data = result.to_dict()

        assert result.relay_ids == ["r0"]
        assert data["per_bundle_results"][1]["error"] == {"kind": "network", "message": "HTTP error 502"}
        assert data["per_bundle_results"][0]["attempts"] == 2
