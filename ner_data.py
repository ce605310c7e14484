import random
from collections import Counter, namedtuple
from enum import Enum

OUTSIDE_LABEL = "OUTSIDE"

START_MARK = "<START:"
END_MARK = "<END>"


class NerDataError(ValueError):
    """Malformed corpus data (unknown tag, broken markup)."""
    pass


class NePosition(Enum):
    BEGIN = "B"
    INSIDE = "I"
    LAST = "L"
    UNIT = "U"
    OUTSIDE = "O"


# CoNLL tag prefixes for both BIO and BILOU/BIOES markups
TAG_PREFIXES = {
    "B": NePosition.BEGIN,
    "I": NePosition.INSIDE,
    "L": NePosition.LAST,
    "E": NePosition.LAST,
    "U": NePosition.UNIT,
    "S": NePosition.UNIT,
}


NamedEntity = namedtuple('NamedEntity', 'type start end')


def make_label(entity_type, position):
    if position == NePosition.OUTSIDE:
        return OUTSIDE_LABEL
    return f"{entity_type}_{position.name}"


def parse_label(label):
    """Splits a label id like PERSON_BEGIN into (type, position)."""
    if label == OUTSIDE_LABEL:
        return None, NePosition.OUTSIDE
    entity_type, _, position_name = label.rpartition('_')
    if not entity_type or position_name not in NePosition.__members__:
        raise NerDataError(f"Unknown label id: {label}")
    position = NePosition[position_name]
    if position == NePosition.OUTSIDE:
        raise NerDataError(f"Outside label must not carry a type: {label}")
    return entity_type, position


def tag_to_label(tag):
    """Converts a CoNLL tag (B-PER, I-PER, O ...) to a label id."""
    if tag == "O" or tag == OUTSIDE_LABEL:
        return OUTSIDE_LABEL
    prefix, sep, entity_type = tag.partition('-')
    if sep and entity_type and prefix in TAG_PREFIXES:
        return make_label(entity_type, TAG_PREFIXES[prefix])
    # native label ids are accepted as they are
    parse_label(tag)
    return tag


def label_to_tag(label):
    entity_type, position = parse_label(label)
    if position == NePosition.OUTSIDE:
        return "O"
    return f"{position.value}-{entity_type}"


def normalize(word):
    return word.replace('’', "'").replace('‘', "'").lower()


class NerToken(object):

    def __init__(self, index, word, normalized, position, entity_type=None):
        self.index = index
        self.word = word
        self.normalized = normalized
        self.position = position
        self.type = None if position == NePosition.OUTSIDE else entity_type

    @classmethod
    def from_label(cls, index, word, label):
        entity_type, position = parse_label(label)
        return cls(index, word, normalize(word), position, entity_type)

    @property
    def label(self):
        return make_label(self.type, self.position)

    def __repr__(self):
        return f"NerToken({self.index}, {self.word!r}, {self.label})"


class NerSentence(object):

    def __init__(self, content, tokens):
        self.content = content
        self.tokens = tokens

    @classmethod
    def from_labels(cls, words, labels):
        tokens = [NerToken.from_label(i, w, l) for i, (w, l) in enumerate(zip(words, labels))]
        return cls(" ".join(words), tokens)

    def __len__(self):
        return len(self.tokens)

    def labels(self):
        return [t.label for t in self.tokens]

    def relabel(self, labels):
        """Returns a copy of this sentence carrying the given labels."""
        if len(labels) != len(self.tokens):
            raise NerDataError(f"Expected {len(self.tokens)} labels, got {len(labels)}")
        tokens = []
        for token, label in zip(self.tokens, labels):
            entity_type, position = parse_label(label)
            tokens.append(NerToken(token.index, token.word, token.normalized, position, entity_type))
        return NerSentence(self.content, tokens)

    def named_entities(self):
        """Derives entity spans from the position markers of the tokens."""
        entities = []
        current_type = None
        start = None

        for token in self.tokens:
            position = token.position
            if position == NePosition.OUTSIDE:
                if current_type is not None:
                    entities.append(NamedEntity(current_type, start, token.index))
                current_type = None
                continue
            if position in (NePosition.BEGIN, NePosition.UNIT) or token.type != current_type:
                if current_type is not None:
                    entities.append(NamedEntity(current_type, start, token.index))
                current_type = token.type
                start = token.index
            if position in (NePosition.LAST, NePosition.UNIT):
                entities.append(NamedEntity(current_type, start, token.index + 1))
                current_type = None

        if current_type is not None:
            entities.append(NamedEntity(current_type, start, len(self.tokens)))
        return entities

    def matching_entities(self, entities):
        """Returns the given entities that occur exactly in this sentence."""
        own = set(self.named_entities())
        return [e for e in entities if e in own]

    def entity_words(self, entity):
        return [t.word for t in self.tokens[entity.start:entity.end]]


class NerDataSet(object):

    def __init__(self, sentences):
        self.sentences = list(sentences)

    def __len__(self):
        return len(self.sentences)

    def __iter__(self):
        return iter(self.sentences)

    @property
    def labels(self):
        return sorted({t.label for s in self.sentences for t in s.tokens})

    def shuffle(self, rng=None):
        (rng or random).shuffle(self.sentences)

    def token_count(self):
        return sum(len(s) for s in self.sentences)

    def entity_counts(self):
        counts = Counter()
        for sentence in self.sentences:
            for entity in sentence.named_entities():
                counts[entity.type] += 1
        return counts

    def info(self):
        lines = [f"Sentence count = {len(self.sentences)}",
                 f"Token count    = {self.token_count()}",
                 f"Label count    = {len(self.labels)}"]
        for entity_type, count in sorted(self.entity_counts().items()):
            lines.append(f"  {entity_type} = {count}")
        return "\n".join(lines)


def _sentence_from_tags(words, tags, path, line_no):
    try:
        labels = [tag_to_label(tag) for tag in tags]
    except NerDataError as e:
        raise NerDataError(f"{path}:{line_no}: {e}") from e
    return NerSentence.from_labels(words, labels)


def load_conll(path):
    """Reads CoNLL-formatted data. Word is the first column, tag the last one."""
    sentences = []
    current_words, current_tags = [], []
    line_no = 0
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                if current_words:
                    sentences.append(_sentence_from_tags(current_words, current_tags, path, line_no))
                    current_words, current_tags = [], []
                continue
            parts = line.split()
            current_words.append(parts[0])
            # unlabeled input, words only
            current_tags.append(parts[-1] if len(parts) > 1 else "O")
    if current_words:  # Add last sentence if file doesn't end with blank line
        sentences.append(_sentence_from_tags(current_words, current_tags, path, line_no))
    return NerDataSet(sentences)


def load_words(path):
    """Reads prediction input. Only the first column (the word) is used, the rest is ignored."""
    sentences = []
    current_words = []
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if not line:
                if current_words:
                    sentences.append(NerSentence.from_labels(current_words, [OUTSIDE_LABEL] * len(current_words)))
                    current_words = []
                continue
            current_words.append(line.split()[0])
    if current_words:
        sentences.append(NerSentence.from_labels(current_words, [OUTSIDE_LABEL] * len(current_words)))
    return NerDataSet(sentences)


def _bracket_positions(length, scheme):
    if scheme == "BILOU":
        if length == 1:
            return [NePosition.UNIT]
        return [NePosition.BEGIN] + [NePosition.INSIDE] * (length - 2) + [NePosition.LAST]
    return [NePosition.BEGIN] + [NePosition.INSIDE] * (length - 1)


def parse_bracket_line(line, scheme="BIO"):
    """Parses `<START:PER> Ali Veli <END> geldi` style annotated sentences."""
    words, labels = [], []
    entity_type = None
    entity_words = []
    for part in line.split():
        if part.startswith(START_MARK) and part.endswith(">"):
            if entity_type is not None:
                raise NerDataError(f"Nested entity start: {part}")
            entity_type = part[len(START_MARK):-1]
            if not entity_type:
                raise NerDataError("Entity start without a type")
        elif part == END_MARK:
            if entity_type is None or not entity_words:
                raise NerDataError("Entity end without a matching start")
            for word, position in zip(entity_words, _bracket_positions(len(entity_words), scheme)):
                words.append(word)
                labels.append(make_label(entity_type, position))
            entity_type = None
            entity_words = []
        elif entity_type is not None:
            entity_words.append(part)
        else:
            words.append(part)
            labels.append(OUTSIDE_LABEL)
    if entity_type is not None:
        raise NerDataError(f"Entity {entity_type} is not closed")
    return NerSentence.from_labels(words, labels)


def load_bracket(path, scheme="BIO"):
    if scheme not in ("BIO", "BILOU"):
        raise ValueError(f"Unknown markup scheme: {scheme}")
    sentences = []
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                sentences.append(parse_bracket_line(line, scheme))
            except NerDataError as e:
                raise NerDataError(f"{path}:{line_no}: {e}") from e
    return NerDataSet(sentences)


def load_dataset(path, data_format="conll", scheme="BIO"):
    """`scheme` (BIO or BILOU) applies to bracket data, CoNLL tags carry their own markup."""
    if data_format == "conll":
        return load_conll(path)
    if data_format == "bracket":
        return load_bracket(path, scheme)
    raise ValueError(f"Unknown data format: {data_format}")


def save_conll(dataset, path):
    with open(path, 'w', encoding='utf-8') as f_out:
        for sentence in dataset:
            for token in sentence.tokens:
                f_out.write(f"{token.word} {label_to_tag(token.label)}\n")
            f_out.write("\n")  # Sentence separator
