from ner_data import NePosition, NerDataError


class DatasetMismatchError(NerDataError):
    """Reference and prediction datasets do not share the same structure."""
    pass


def ratio(numerator, denominator):
    """Simple ratio, NaN when the denominator is empty."""
    if denominator == 0:
        return float('nan')
    return numerator / denominator


class TestResult(object):
    """Token and entity level counts of one evaluation run."""

    __test__ = False  # not a pytest test class

    def __init__(self):
        self.error_count = 0
        self.token_count = 0
        self.true_positives = 0
        self.false_positives = 0
        self.false_negatives = 0
        self.test_named_entity_count = 0
        self.correct_named_entity_count = 0

    def token_error_ratio(self):
        return ratio(self.error_count, self.token_count)

    def token_precision(self):
        return ratio(self.true_positives, self.true_positives + self.false_positives)

    def token_recall(self):
        return ratio(self.true_positives, self.true_positives + self.false_negatives)

    def exact_match(self):
        return ratio(self.correct_named_entity_count, self.test_named_entity_count)

    def as_dict(self):
        return {
            'token_error_ratio': self.token_error_ratio(),
            'token_precision': self.token_precision(),
            'token_recall': self.token_recall(),
            'exact_match': self.exact_match(),
        }

    def dump(self):
        return " ".join([
            f"Token Error ratio = {self.token_error_ratio():.6f}",
            f"NE Token Precision = {self.token_precision():.6f}",
            f"NE Token Recall = {self.token_recall():.6f}",
            f"Exact NER match = {self.exact_match():.6f}",
        ])


def check_pairing(reference, prediction):
    if len(reference.sentences) != len(prediction.sentences):
        raise DatasetMismatchError(
            f"Sentence count mismatch: {len(reference.sentences)} != {len(prediction.sentences)}")
    for i, (ts, ps) in enumerate(zip(reference.sentences, prediction.sentences)):
        if len(ts.tokens) != len(ps.tokens):
            raise DatasetMismatchError(
                f"Token count mismatch in sentence {i}: {len(ts.tokens)} != {len(ps.tokens)}")


def evaluate(reference, prediction):
    """Compares a prediction dataset against the reference, token by token and entity by entity."""
    check_pairing(reference, prediction)
    result = TestResult()

    for ts, ps in zip(reference.sentences, prediction.sentences):
        for tt, pt in zip(ts.tokens, ps.tokens):
            if tt.label != pt.label:
                result.error_count += 1
                if tt.position == NePosition.OUTSIDE:
                    result.false_positives += 1
                if pt.position == NePosition.OUTSIDE:
                    result.false_negatives += 1
            elif tt.position != NePosition.OUTSIDE:
                result.true_positives += 1
            result.token_count += 1

        named_entities = ts.named_entities()
        result.test_named_entity_count += len(named_entities)
        result.correct_named_entity_count += len(ps.matching_entities(named_entities))

    return result


def write_report(reference, prediction, report_path):
    """Writes a per token gold/predicted diff followed by the metrics line."""
    result = evaluate(reference, prediction)
    with open(report_path, 'w', encoding='utf-8') as f:
        for ts, ps in zip(reference.sentences, prediction.sentences):
            f.write(f"{ts.content}\n")
            for tt, pt in zip(ts.tokens, ps.tokens):
                if tt.word == tt.normalized:
                    f.write(f"{tt.word} {tt.label} -> {pt.label}\n")
                else:
                    f.write(f"{tt.word}:{tt.normalized} {tt.label} -> {pt.label}\n")
        f.write(result.dump() + "\n")
    return result
