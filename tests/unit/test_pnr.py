from src.domain.pnr import PNR_ALPHABET, PNR_LENGTH, generate_candidate_pnr, normalize_pnr


def test_candidate_uses_unambiguous_alphabet():
    for _ in range(200):
        candidate = generate_candidate_pnr()
        assert len(candidate) == PNR_LENGTH
        assert set(candidate) <= set(PNR_ALPHABET)


def test_alphabet_excludes_lookalikes():
    for char in "01ILO":
        assert char not in PNR_ALPHABET


def test_normalize_is_case_insensitive():
    assert normalize_pnr("  ab3cd9 ") == "AB3CD9"
