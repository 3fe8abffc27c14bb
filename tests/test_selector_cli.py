from __future__ import annotations

import json
from pathlib import Path

import pytest

from selector_cli import parse_args, resolve_alphabet, resolve_prefix, run
from selector_candidates import ALPHABETS, index_of


def run_json(capsys, argv):
    code = run(argv + ["--json", "--quiet", "--workers", "1"])
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


def test_leading_zero_search(capsys) -> None:
    code, payload = run_json(capsys, ["deposit", "uint256", "--alphabet", "abc", "--max-len", "2", "--top", "3"])
    assert code == 0
    assert payload["baseSignature"] == "deposit(uint256)"
    assert payload["baseSelector"] == "b6b55f25"
    assert payload["candidatesEvaluated"] == 12
    assert payload["budgetExhausted"] is True
    assert len(payload["results"]) == 3
    assert payload["results"][0]["fullSignature"].startswith("deposit_")


def test_signature_option(capsys) -> None:
    code, payload = run_json(capsys, ["--signature", "transfer(address,uint256)", "--alphabet", "ab", "--max-len", "1"])
    assert code == 0
    assert payload["baseSelector"] == "a9059cbb"
    assert {r["variantToken"] for r in payload["results"]} == {"a", "b"}


def test_deposit_ps2_via_cursor(capsys) -> None:
    start = index_of(ALPHABETS["digits+letters"], 1, "ps2")
    code, payload = run_json(
        capsys,
        ["deposit", "uint256", "--alphabet", "digits+letters", "--max-len", "6",
         "--start", str(start), "--max-candidates", "1"],
    )
    assert code == 0
    assert payload["results"][0]["selectorHex"] == "0000fee6"
    assert payload["results"][0]["fullSignature"] == "deposit_ps2(uint256)"


def test_numeric_rank_with_sibling_file(capsys, tmp_path: Path) -> None:
    siblings = tmp_path / "siblings.json"
    siblings.write_text(json.dumps(["80000000", "c0000000"]), encoding="utf-8")
    code, payload = run_json(
        capsys,
        ["deposit", "uint256", "--model", "numeric_rank", "--siblings", str(siblings),
         "--alphabet", "abcdef", "--max-len", "2", "--early-stop", "0"],
    )
    assert code == 0
    assert payload["earlyStopTriggered"] is True
    assert payload["results"][0]["score"] == 0
    assert int(payload["results"][0]["selectorHex"], 16) < 0x80000000


def test_numeric_rank_with_abi_and_cost_table(capsys, tmp_path: Path) -> None:
    abi = tmp_path / "abi.json"
    abi.write_text(json.dumps({"abi": [
        {"type": "function", "name": "transfer", "inputs": [{"type": "address"}, {"type": "uint256"}]},
        {"type": "function", "name": "deposit", "inputs": [{"type": "uint256"}]},
    ]}), encoding="utf-8")
    table = tmp_path / "costs.json"
    table.write_text(json.dumps([0, 22]), encoding="utf-8")
    code, payload = run_json(
        capsys,
        ["deposit", "uint256", "--model", "numeric_rank", "--abi", str(abi), "--cost-table", str(table),
         "--alphabet", "ab", "--max-len", "2"],
    )
    assert code == 0
    assert "1 siblings" in payload["model"]
    assert {r["score"] for r in payload["results"]} <= {0, 22}


def test_numeric_rank_without_siblings_fails(capsys) -> None:
    assert run(["deposit", "uint256", "--model", "numeric_rank", "--quiet"]) == 2
    assert "sibling" in capsys.readouterr().err


def test_target_prefix_stops_on_match(capsys) -> None:
    code, payload = run_json(
        capsys,
        ["deposit", "uint256", "--model", "target_prefix", "--prefix", "0x00", "--alphabet", "digits+letters",
         "--max-len", "3"],
    )
    assert code == 0
    assert payload["earlyStopTriggered"] is True
    assert payload["results"][0]["selectorHex"].startswith("00")


@pytest.mark.parametrize(
    "argv",
    [
        ["1deposit", "uint256"],
        ["deposit", "uint"],
        ["deposit", "uint256", "--alphabet", "aab"],
        ["--signature", "deposit(uint256"],
        ["deposit", "uint256", "--model", "target_prefix"],
        ["deposit", "uint256", "--model", "target_prefix", "--prefix", "abc"],
        [],
    ],
)
def test_invalid_input_exits_2(argv, capsys) -> None:
    assert run(argv + ["--quiet"]) == 2
    assert "❌" in capsys.readouterr().err


def test_zero_results_exit_0(capsys) -> None:
    code, payload = run_json(capsys, ["deposit", "uint256", "--max-candidates", "0"])
    assert code == 0
    assert payload["results"] == []


def test_table_output(capsys) -> None:
    assert run(["deposit", "uint256", "--alphabet", "ab", "--max-len", "1", "--quiet", "--workers", "1"]) == 0
    out = capsys.readouterr().out
    assert "selector" in out.splitlines()[0]
    assert "deposit_a(uint256)" in out
    assert "deposit_b(uint256)" in out


def test_types_file_restricts_vocabulary(capsys, tmp_path: Path) -> None:
    vocab = tmp_path / "types.json"
    vocab.write_text(json.dumps(["address"]), encoding="utf-8")
    assert run(["deposit", "uint256", "--types-file", str(vocab), "--quiet"]) == 2


def test_resolve_helpers() -> None:
    assert resolve_alphabet("hex") == "0123456789abcdef"
    assert resolve_alphabet("xyz") == "xyz"
    assert resolve_prefix("0x0000") == b"\x00\x00"
    with pytest.raises(ValueError):
        resolve_prefix("0x")


def test_defaults() -> None:
    args = parse_args(["deposit", "uint256"])
    assert args.model == "leading_zero_bytes"
    assert args.separator == "_"
    assert args.types == ["uint256"]
    assert args.pool == "process"


@pytest.mark.parametrize(
    "argv",
    [
        ["deposit", "uint256", "--signature", "deposit(uint256)"],
        ["deposit", "--signature", "transfer(address,uint256)"],
    ],
)
def test_signature_with_positionals_is_rejected(argv, capsys) -> None:
    assert run(argv + ["--quiet", "--workers", "1"]) == 2
    assert "not both" in capsys.readouterr().err


def test_rpc_failure_exits_2(fake_web3, capsys) -> None:
    fake_web3.error = TimeoutError("read timed out")
    argv = [
        "deposit", "uint256",
        "--model", "numeric_rank",
        "--address", "0xdac17f958d2ee523a2206206994597c13d831ec7",
        "--rpc", "http://node",
        "--quiet",
    ]
    assert run(argv) == 2
    assert "read timed out" in capsys.readouterr().err


def test_rank_against_onchain_siblings(fake_web3, capsys) -> None:
    fake_web3.code = bytes.fromhex("63800000001463c000000014")
    code, payload = run_json(
        capsys,
        [
            "deposit", "uint256",
            "--model", "numeric_rank",
            "--address", "0xdac17f958d2ee523a2206206994597c13d831ec7",
            "--alphabet", "ab", "--max-len", "1",
        ],
    )
    assert code == 0
    assert payload["candidatesEvaluated"] == 2


@pytest.mark.parametrize("pool", ["process", "thread"])
def test_parallel_pools_agree_with_single_worker(pool, capsys) -> None:
    base = ["deposit", "uint256", "--alphabet", "abc", "--max-len", "2", "--json", "--quiet"]
    assert run(base + ["--workers", "1"]) == 0
    single = json.loads(capsys.readouterr().out)
    assert run(base + ["--workers", "2", "--chunk-size", "5", "--pool", pool]) == 0
    assert json.loads(capsys.readouterr().out) == single
