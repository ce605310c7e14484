# tests/test_ner_data.py - Unit tests for ner_data.py

import random

import pytest

from ner_data import (
    NamedEntity,
    NePosition,
    NerDataError,
    NerDataSet,
    NerSentence,
    OUTSIDE_LABEL,
    label_to_tag,
    load_bracket,
    load_conll,
    load_dataset,
    load_words,
    parse_bracket_line,
    parse_label,
    save_conll,
    tag_to_label,
)


def sentence(words, labels):
    return NerSentence.from_labels(words.split(), labels.split())


class TestLabels:
    """Label id parsing and CoNLL tag conversion"""

    def test_parse_entity_label(self):
        assert parse_label("PERSON_BEGIN") == ("PERSON", NePosition.BEGIN)
        assert parse_label("GPE_LOC_INSIDE") == ("GPE_LOC", NePosition.INSIDE)

    def test_parse_outside_label(self):
        assert parse_label(OUTSIDE_LABEL) == (None, NePosition.OUTSIDE)

    @pytest.mark.parametrize("label", ["PERSON", "PERSON_MIDDLE", "_BEGIN", "PERSON_OUTSIDE"])
    def test_parse_invalid_label(self, label):
        with pytest.raises(NerDataError):
            parse_label(label)

    @pytest.mark.parametrize("tag,label", [
        ("O", "OUTSIDE"),
        ("B-PER", "PER_BEGIN"),
        ("I-PER", "PER_INSIDE"),
        ("E-LOC", "LOC_LAST"),
        ("L-LOC", "LOC_LAST"),
        ("S-ORG", "ORG_UNIT"),
        ("U-ORG", "ORG_UNIT"),
        ("PERSON_BEGIN", "PERSON_BEGIN"),
    ])
    def test_tag_to_label(self, tag, label):
        assert tag_to_label(tag) == label

    def test_label_to_tag(self):
        assert label_to_tag("PER_BEGIN") == "B-PER"
        assert label_to_tag("LOC_LAST") == "L-LOC"
        assert label_to_tag(OUTSIDE_LABEL) == "O"

    def test_unknown_tag(self):
        with pytest.raises(NerDataError):
            tag_to_label("X-PER")


class TestNamedEntities:
    """Span derivation from position markers"""

    def test_bio_spans(self):
        s = sentence("Ali Veli Ankara'ya gitti", "PER_BEGIN PER_INSIDE LOC_BEGIN OUTSIDE")
        assert s.named_entities() == [NamedEntity("PER", 0, 2), NamedEntity("LOC", 2, 3)]

    def test_adjacent_begin_splits_entities(self):
        s = sentence("Ali Veli", "PER_BEGIN PER_BEGIN")
        assert s.named_entities() == [NamedEntity("PER", 0, 1), NamedEntity("PER", 1, 2)]

    def test_bilou_spans(self):
        s = sentence("Ali Veli Can ve Ayşe", "PER_BEGIN PER_INSIDE PER_LAST OUTSIDE PER_UNIT")
        assert s.named_entities() == [NamedEntity("PER", 0, 3), NamedEntity("PER", 4, 5)]

    def test_inside_without_begin_opens_entity(self):
        s = sentence("dün Ali Veli", "OUTSIDE PER_INSIDE PER_INSIDE")
        assert s.named_entities() == [NamedEntity("PER", 1, 3)]

    def test_type_change_splits_entity(self):
        s = sentence("Ali Ankara", "PER_BEGIN LOC_INSIDE")
        assert s.named_entities() == [NamedEntity("PER", 0, 1), NamedEntity("LOC", 1, 2)]

    def test_no_entities(self):
        s = sentence("dün geldi", "OUTSIDE OUTSIDE")
        assert s.named_entities() == []

    def test_matching_entities_requires_exact_boundaries(self):
        reference = sentence("Ali Veli geldi", "PER_BEGIN PER_INSIDE OUTSIDE")
        shorter = sentence("Ali Veli geldi", "PER_BEGIN OUTSIDE OUTSIDE")
        longer = sentence("Ali Veli geldi", "PER_BEGIN PER_INSIDE PER_INSIDE")
        entities = reference.named_entities()
        assert shorter.matching_entities(entities) == []
        assert longer.matching_entities(entities) == []
        assert reference.matching_entities(entities) == entities

    def test_entity_words(self):
        s = sentence("Ali Veli geldi", "PER_BEGIN PER_INSIDE OUTSIDE")
        assert s.entity_words(s.named_entities()[0]) == ["Ali", "Veli"]


class TestSentence:

    def test_tokens(self):
        s = sentence("Ankara’ya gitti", "LOC_BEGIN OUTSIDE")
        assert s.content == "Ankara’ya gitti"
        assert s.tokens[0].normalized == "ankara'ya"
        assert s.tokens[0].type == "LOC"
        assert s.tokens[1].type is None
        assert s.labels() == ["LOC_BEGIN", "OUTSIDE"]

    def test_relabel_keeps_structure(self):
        s = sentence("Ali geldi", "PER_BEGIN OUTSIDE")
        relabeled = s.relabel(["OUTSIDE", "OUTSIDE"])
        assert relabeled.labels() == ["OUTSIDE", "OUTSIDE"]
        assert [t.word for t in relabeled.tokens] == ["Ali", "geldi"]
        # original untouched
        assert s.labels() == ["PER_BEGIN", "OUTSIDE"]

    def test_relabel_length_mismatch(self):
        s = sentence("Ali geldi", "PER_BEGIN OUTSIDE")
        with pytest.raises(NerDataError):
            s.relabel(["OUTSIDE"])


class TestDataSet:

    @pytest.fixture
    def dataset(self):
        return NerDataSet([
            sentence("Ali Veli geldi", "PER_BEGIN PER_INSIDE OUTSIDE"),
            sentence("Ankara büyük", "LOC_BEGIN OUTSIDE"),
            sentence("dün", "OUTSIDE"),
        ])

    def test_labels(self, dataset):
        assert dataset.labels == ["LOC_BEGIN", "OUTSIDE", "PER_BEGIN", "PER_INSIDE"]

    def test_counts(self, dataset):
        assert len(dataset) == 3
        assert dataset.token_count() == 6
        assert dataset.entity_counts() == {"PER": 1, "LOC": 1}
        assert "Sentence count = 3" in dataset.info()

    def test_shuffle_is_seeded(self, dataset):
        other = NerDataSet(list(dataset.sentences))
        dataset.shuffle(random.Random(7))
        other.shuffle(random.Random(7))
        assert [s.content for s in dataset] == [s.content for s in other]
        assert sorted(s.content for s in dataset) == ["Ali Veli geldi", "Ankara büyük", "dün"]


class TestConll:

    def test_load(self, tmp_path):
        path = tmp_path / "train.txt"
        path.write_text("Ali B-PER\nVeli I-PER\ngeldi O\n\n\nAnkara B-LOC\n", encoding="utf-8")
        dataset = load_conll(str(path))
        assert len(dataset) == 2
        assert dataset.sentences[0].labels() == ["PER_BEGIN", "PER_INSIDE", "OUTSIDE"]
        assert dataset.sentences[1].content == "Ankara"

    def test_load_multi_column_uses_last(self, tmp_path):
        path = tmp_path / "train.txt"
        path.write_text("Ali NNP B-NP B-PER\n", encoding="utf-8")
        assert load_conll(str(path)).sentences[0].labels() == ["PER_BEGIN"]

    def test_words_only_are_outside(self, tmp_path):
        path = tmp_path / "test.txt"
        path.write_text("Ali\ngeldi\n", encoding="utf-8")
        assert load_conll(str(path)).sentences[0].labels() == ["OUTSIDE", "OUTSIDE"]

    def test_bad_tag_reports_location(self, tmp_path):
        path = tmp_path / "train.txt"
        path.write_text("Ali X-PER\n\n", encoding="utf-8")
        with pytest.raises(NerDataError, match="train.txt"):
            load_conll(str(path))

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "out.txt"
        dataset = NerDataSet([sentence("Ali Veli geldi", "PER_BEGIN PER_INSIDE OUTSIDE")])
        save_conll(dataset, str(path))
        assert path.read_text(encoding="utf-8") == "Ali B-PER\nVeli I-PER\ngeldi O\n\n"
        assert load_conll(str(path)).sentences[0].labels() == dataset.sentences[0].labels()


class TestWords:

    def test_extra_columns_are_ignored(self, tmp_path):
        path = tmp_path / "input.txt"
        path.write_text("Ali NNP\ngeldi VBD\n\nAnkara NNP\n", encoding="utf-8")
        dataset = load_words(str(path))
        assert [s.content for s in dataset] == ["Ali geldi", "Ankara"]
        assert dataset.sentences[0].labels() == ["OUTSIDE", "OUTSIDE"]

    def test_tag_column_is_not_read(self, tmp_path):
        path = tmp_path / "input.txt"
        path.write_text("Ali B-PER\n", encoding="utf-8")
        assert load_words(str(path)).sentences[0].labels() == ["OUTSIDE"]


class TestBracket:

    def test_bio(self):
        s = parse_bracket_line("<START:PER> Ali Veli <END> <START:LOC> Ankara'ya <END> gitti")
        assert s.content == "Ali Veli Ankara'ya gitti"
        assert s.labels() == ["PER_BEGIN", "PER_INSIDE", "LOC_BEGIN", "OUTSIDE"]

    def test_bilou(self):
        s = parse_bracket_line("<START:PER> Ali Veli Can <END> ve <START:PER> Ayşe <END>", scheme="BILOU")
        assert s.labels() == ["PER_BEGIN", "PER_INSIDE", "PER_LAST", "OUTSIDE", "PER_UNIT"]

    @pytest.mark.parametrize("line", [
        "<START:PER> Ali",
        "Ali <END>",
        "<START:PER> <END>",
        "<START:PER> Ali <START:LOC> Ankara <END>",
    ])
    def test_malformed(self, line):
        with pytest.raises(NerDataError):
            parse_bracket_line(line)

    def test_load(self, tmp_path):
        path = tmp_path / "train.txt"
        path.write_text("<START:PER> Ali <END> geldi\n\n<START:PER> Ali\n", encoding="utf-8")
        with pytest.raises(NerDataError, match=":3:"):
            load_bracket(str(path))

    def test_load_dataset_with_scheme(self, tmp_path):
        path = tmp_path / "train.txt"
        path.write_text("<START:PER> Ali Veli <END> ve <START:PER> Ayşe <END>\n", encoding="utf-8")
        bilou = load_dataset(str(path), "bracket", scheme="BILOU")
        assert bilou.sentences[0].labels() == ["PER_BEGIN", "PER_LAST", "OUTSIDE", "PER_UNIT"]
        bio = load_dataset(str(path), "bracket")
        assert bio.sentences[0].labels() == ["PER_BEGIN", "PER_INSIDE", "OUTSIDE", "PER_BEGIN"]

    def test_unknown_scheme(self, tmp_path):
        path = tmp_path / "train.txt"
        path.write_text("Ali geldi\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_dataset(str(path), "bracket", scheme="IOB2")
