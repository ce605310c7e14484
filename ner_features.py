import string

# Column values available to template rules: %x[offset,column]
WORD_COLUMN = 0
NORMALIZED_COLUMN = 1
SHAPE_COLUMN = 2

# Hardcoded template rules for feature generation
TEMPLATE_RULES = [
    "U00:%x[-2,1]",
    "U01:%x[-1,1]",
    "U02:%x[0,0]",
    "U03:%x[0,1]",
    "U04:%x[1,1]",
    "U05:%x[2,1]",
    "U06:%x[-1,1]/%x[0,1]",
    "U07:%x[0,1]/%x[1,1]",
    "U08:%x[-1,1]/%x[1,1]",
    # Word shape features
    "U10:%x[0,2]",
    "U11:%x[-1,2]/%x[0,2]",
    "U12:%x[0,2]/%x[1,2]",
]

DEFAULT_AFFIX_LENGTH = 3

# Number of preceding predicted labels turned into history features
HISTORY_SIZE = 3
HISTORY_PREFIXES = ["PreType", "2PreType", "3PreType"]

PUNCTUATION = set(string.punctuation) | {'“', '”', '‘', '’', '«', '»', '…'}


def parse_template_rule(rule_str):
    """ Parses a single template rule string into a structured dictionary. """
    rule_details = {'original_rule': rule_str, 'prefix': None, 'cells': []}

    parts = rule_str.split(':', 1)
    if len(parts) != 2 or not parts[0].startswith('U') or not parts[1]:
        return None  # Malformed or unsupported rule, skip

    rule_details['prefix'] = parts[0]
    for spec_part in parts[1].split('/'):
        try:
            # Expecting format like %x[offset,column]
            if not (spec_part.startswith('%x[') and spec_part.endswith(']')):
                return None
            offset_str, column_str = spec_part[3:-1].split(',')
            column = int(column_str)
            if column not in (WORD_COLUMN, NORMALIZED_COLUMN, SHAPE_COLUMN):
                return None
            rule_details['cells'].append((int(offset_str), column))
        except ValueError:
            return None  # Parsing error for offset or column
    return rule_details


def pre_parse_all_template_rules(template_rules_list):
    """ Parses all template rule strings and stores them. """
    parsed_rules = []
    for rule_str in template_rules_list:
        parsed = parse_template_rule(rule_str)
        if parsed:  # Only add successfully parsed rules
            parsed_rules.append(parsed)
    return parsed_rules


def word_shape(word):
    """Collapsed character-class shape: Ankara'ya -> Aa'a, 1923 -> d."""
    shape = []
    for ch in word:
        if ch.isupper():
            c = 'A'
        elif ch.islower():
            c = 'a'
        elif ch.isdigit():
            c = 'd'
        else:
            c = ch
        if not shape or shape[-1] != c:
            shape.append(c)
    return "".join(shape)


def token_column(token, column):
    """Column 0 is the surface form, 1 the normalized form, 2 the word shape."""
    if column == WORD_COLUMN:
        return token.word
    if column == NORMALIZED_COLUMN:
        return token.normalized
    return word_shape(token.word)


def history_features(predicted_labels, index):
    """
    Features of the labels already assigned to the preceding tokens.
    Tokens near the sentence start get fewer of them.
    """
    features = []
    for distance in range(1, HISTORY_SIZE + 1):
        if index - distance < 0:
            break
        features.append(f"{HISTORY_PREFIXES[distance - 1]}={predicted_labels[index - distance]}")
    return features


class FeatureExtractor(object):
    """
    Produces the textual features of a token in sentence context.
    `morphology` is an optional callable returning analysis strings for a word.
    """

    def __init__(self, template_rules=None, affix_length=DEFAULT_AFFIX_LENGTH, morphology=None):
        self.template_rules = list(TEMPLATE_RULES if template_rules is None else template_rules)
        self.affix_length = affix_length
        self.morphology = morphology
        self.parsed_rules = pre_parse_all_template_rules(self.template_rules)

    def config(self):
        return {'template_rules': self.template_rules, 'affix_length': self.affix_length}

    def __call__(self, sentence, index):
        return self.textual_features(sentence, index)

    def textual_features(self, sentence, index):
        tokens = sentence.tokens
        length = len(tokens)

        def cell(offset, column):
            abs_idx = index + offset
            if 0 <= abs_idx < length:
                return token_column(tokens[abs_idx], column)
            elif abs_idx < 0:
                return "BOS"
            else:
                return "EOS"

        features = []
        for rule_details in self.parsed_rules:
            observed = "/".join(cell(off, col) for off, col in rule_details['cells'])
            features.append(f"{rule_details['prefix']}:{observed}")

        word = tokens[index].word
        normalized = tokens[index].normalized
        if word[:1].isupper():
            features.append("FirstUpper")
        if word.isupper():
            features.append("AllUpper")
        if any(ch.isdigit() for ch in word):
            features.append("HasDigit")
        if word.isdigit():
            features.append("AllDigit")
        if "'" in normalized:
            stem = normalized.split("'")[0]
            features.append("HasApostrophe")
            features.append(f"Stem={stem}")
        if all(ch in PUNCTUATION for ch in word):
            features.append("Punctuation")
        if index == 0:
            features.append("SentenceStart")

        for k in range(1, self.affix_length + 1):
            if len(normalized) > k:
                features.append(f"Prefix{k}={normalized[:k]}")
                features.append(f"Suffix{k}={normalized[-k:]}")

        if self.morphology is not None:
            for analysis in self.morphology(word):
                features.append(f"M:{analysis}")

        # keep first occurrence order, drop repeats
        return list(dict.fromkeys(features))
