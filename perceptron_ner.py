import argparse
import pickle
import random
from collections import namedtuple

import wandb
from tqdm import tqdm

from ner_data import NerDataError, NerDataSet, load_dataset, load_words, save_conll
from ner_eval import evaluate, ratio, write_report
from ner_features import FeatureExtractor, history_features

DEFAULT_EPOCHS = 10
DEFAULT_LEARNING_RATE = 0.1

ScoredLabel = namedtuple('ScoredLabel', 'label score')


class Weights(object):
    """Sparse weight vector keyed by feature string. Absent features weigh 0."""

    def __init__(self, data=None):
        self.data = dict(data) if data else {}

    def get(self, feature):
        return self.data.get(feature, 0.0)

    def put(self, feature, value):
        self.data[feature] = value

    def add_scaled(self, features, delta):
        data = self.data
        for f in features:
            data[f] = data.get(f, 0.0) + delta

    def score(self, features):
        data = self.data
        return sum(data.get(f, 0.0) for f in features)

    def copy(self):
        return Weights(self.data)

    def items(self):
        return self.data.items()

    def __iter__(self):
        # snapshot, callers may put() while iterating
        return iter(list(self.data))

    def __len__(self):
        return len(self.data)

    def __contains__(self, feature):
        return feature in self.data


class ClassModel(object):

    def __init__(self, id, sparse_weights=None):
        self.id = id
        self.sparse_weights = sparse_weights if sparse_weights is not None else Weights()

    def score(self, features):
        return self.sparse_weights.score(features)

    def update_sparse(self, features, delta):
        self.sparse_weights.add_scaled(features, delta)

    def copy(self):
        return ClassModel(self.id, self.sparse_weights.copy())

    def __repr__(self):
        return f"ClassModel({self.id}, {len(self.sparse_weights)} features)"


def predict_type_and_position(model, features):
    """
    Scores every label against the active features and returns the best one.
    Labels are visited in lexical order; on exact ties the first one wins.
    """
    if not model:
        raise ValueError("Model has no labels to predict")
    best = None
    for label in sorted(model):
        score = model[label].score(features)
        if best is None or score > best.score:
            best = ScoredLabel(label, score)
    return best


def sparse_features(feature_extractor, sentence, index, predicted_labels):
    """Textual features of the token followed by the history of predicted labels."""
    features = list(feature_extractor(sentence, index))
    features.extend(history_features(predicted_labels, index))
    return features


def copy_model(model):
    return {label: class_model.copy() for label, class_model in model.items()}


def average_weights(averages, model, counts):
    """
    Turns live weights into averaged weights in place: w - a / count.
    Must be applied once per weight state. Labels with zero count are left as they are.
    """
    for type_id, class_model in model.items():
        count = counts.get(type_id, 0)
        if count == 0:
            continue
        w = class_model.sparse_weights
        a = averages[type_id].sparse_weights
        for s in w:
            w.put(s, w.get(s) - a.get(s) / count)


class PerceptronNer(object):
    """Greedy left-to-right tagger over per-label class models."""

    def __init__(self, model, feature_extractor=None):
        self.model = model
        self.feature_extractor = feature_extractor if feature_extractor is not None else FeatureExtractor()

    @property
    def labels(self):
        return sorted(self.model)

    def tag(self, sentence):
        predicted_labels = []
        for i in range(len(sentence.tokens)):
            features = sparse_features(self.feature_extractor, sentence, i, predicted_labels)
            predicted_labels.append(predict_type_and_position(self.model, features).label)
        return sentence.relabel(predicted_labels)

    def test(self, dataset):
        """Tags every sentence, returning a dataset with the same structure."""
        return NerDataSet(self.tag(s) for s in tqdm(dataset.sentences, desc="Tagging", leave=False))

    def save(self, model_path):
        """Only models using a FeatureExtractor can be saved."""
        model_data = {
            'weights': {label: dict(m.sparse_weights.items()) for label, m in self.model.items()},
            'feature_config': self.feature_extractor.config(),
        }
        with open(model_path, 'wb') as f_model:
            pickle.dump(model_data, f_model)

    @classmethod
    def load(cls, model_path, morphology=None):
        with open(model_path, 'rb') as f_model:
            model_data = pickle.load(f_model)
        model = {label: ClassModel(label, Weights(weights))
                 for label, weights in model_data['weights'].items()}
        extractor = FeatureExtractor(morphology=morphology, **model_data['feature_config'])
        return cls(model, extractor)


class AveragedPerceptronTrainer(object):
    """
    Online mistake driven trainer keeping live weights and a running
    accumulator per label. Averaged weights are reconstructed as
    live - accumulator / count, where count is the per label update counter.
    """

    def __init__(self, labels, learning_rate=DEFAULT_LEARNING_RATE, seed=None, shuffle=True,
                 feature_extractor=None):
        labels = list(labels)
        if not labels:
            raise NerDataError("Training set has no labels, nothing to train")
        self.learning_rate = learning_rate
        self.shuffle = shuffle
        self.random = random.Random(seed)
        self.feature_extractor = feature_extractor if feature_extractor is not None else FeatureExtractor()

        # initialize model weights for all classes.
        self.model = {}
        self.averages = {}
        self.counts = {}
        for type_id in labels:
            self.model[type_id] = ClassModel(type_id)
            self.averages[type_id] = ClassModel(type_id)
            self.counts[type_id] = 0

        self.epoch = 0
        self.finished = False

    def _check_active(self):
        if self.finished:
            raise RuntimeError("Training already finished, weights are averaged.")

    def train_sentence(self, sentence):
        """Runs the online updates over one sentence and returns its mistake count."""
        self._check_active()
        error_count = 0
        predicted_labels = []
        learning_rate = self.learning_rate

        for i, token in enumerate(sentence.tokens):
            current_id = token.label
            if current_id not in self.model:
                raise NerDataError(f"Label {current_id} is not in the trained label set")

            features = sparse_features(self.feature_extractor, sentence, i, predicted_labels)
            predicted_id = predict_type_and_position(self.model, features).label
            predicted_labels.append(predicted_id)

            if predicted_id == current_id:
                # no weight change, the counter still moves
                self.counts[current_id] += 1
                continue

            self.counts[current_id] += 1
            self.counts[predicted_id] += 1
            error_count += 1

            self.model[current_id].update_sparse(features, +learning_rate)
            self.model[predicted_id].update_sparse(features, -learning_rate)

            self.averages[current_id].update_sparse(
                features, self.counts[current_id] * learning_rate)
            self.averages[predicted_id].update_sparse(
                features, -self.counts[predicted_id] * learning_rate)

        return error_count

    def train_epoch(self, training_set):
        """One pass over the (shuffled) training set. Returns (error_count, token_count)."""
        self._check_active()
        if self.shuffle:
            training_set.shuffle(self.random)

        error_count = 0
        token_count = 0
        self.epoch += 1
        for sentence in tqdm(training_set.sentences, desc=f"Epoch {self.epoch} Sentences", leave=False):
            error_count += self.train_sentence(sentence)
            token_count += len(sentence.tokens)
        return error_count, token_count

    def averaged_model(self):
        """Averaged copy of the current live weights. Training state is not touched."""
        model_copy = copy_model(self.model)
        average_weights(self.averages, model_copy, self.counts)
        return model_copy

    def evaluate(self, dev_set):
        ner = PerceptronNer(self.averaged_model(), self.feature_extractor)
        return evaluate(dev_set, ner.test(dev_set))

    def finish(self):
        self._check_active()
        average_weights(self.averages, self.model, self.counts)
        self.finished = True
        return PerceptronNer(self.model, self.feature_extractor)


def train_perceptron(training_set, dev_set, iteration_count=DEFAULT_EPOCHS,
                     learning_rate=DEFAULT_LEARNING_RATE, seed=None, shuffle=True,
                     feature_extractor=None, run=None):
    """Trains an averaged perceptron tagger, reporting dev metrics after every epoch."""
    trainer = AveragedPerceptronTrainer(training_set.labels, learning_rate, seed=seed, shuffle=shuffle,
                                        feature_extractor=feature_extractor)

    for it in tqdm(range(iteration_count), desc="Epochs"):
        error_count, token_count = trainer.train_epoch(training_set)
        token_error = ratio(error_count, token_count)
        tqdm.write(f"Iteration {it + 1}, Token error = {token_error:.6f}")
        metrics = {"epoch": it + 1, "train_token_error": token_error}

        if dev_set is not None:
            result = trainer.evaluate(dev_set)
            tqdm.write(result.dump())
            metrics.update({f"dev_{k}": v for k, v in result.as_dict().items()})

        if run is not None:
            run.log(metrics)

    print("Training finished.")
    return trainer.finish()


def train(input_file, model_output_path, dev_file=None, num_epochs=DEFAULT_EPOCHS,
          learning_rate=DEFAULT_LEARNING_RATE, seed=None, shuffle=True, data_format="conll",
          scheme="BIO", wandb_mode=None):
    print(f"Starting averaged perceptron training...")
    print(f"Input: {input_file}, Dev: {dev_file}, Model Output: {model_output_path}")
    print(f"Epochs: {num_epochs}, LR: {learning_rate}, Seed: {seed}")

    training_set = load_dataset(input_file, data_format, scheme)
    dev_set = load_dataset(dev_file, data_format, scheme) if dev_file else None
    print(training_set.info())

    run = wandb.init(
        project="perceptron-ner",
        config={
            "learning_rate": learning_rate,
            "epochs": num_epochs,
            "seed": seed,
            "shuffle": shuffle,
            "input_file": input_file,
            "dev_file": dev_file,
            "model_output_path": model_output_path,
            "labels": training_set.labels,
        },
        mode=wandb_mode,
    )

    ner = train_perceptron(training_set, dev_set, num_epochs, learning_rate, seed=seed, shuffle=shuffle,
                           run=run)
    ner.save(model_output_path)
    print(f"Training complete. Model saved to {model_output_path}")
    wandb.finish()
    return ner


def predict(model_input_path, input_file, output_file):
    print(f"Running prediction...")
    ner = PerceptronNer.load(model_input_path)
    # word is the first column, any other column is ignored
    sentences = load_words(input_file)
    save_conll(ner.test(sentences), output_file)
    print(f"Prediction complete. Output saved to {output_file}")


def evaluate_model(model_input_path, input_file, report_path=None, data_format="conll", scheme="BIO"):
    print(f"Running evaluation...")
    ner = PerceptronNer.load(model_input_path)
    reference = load_dataset(input_file, data_format, scheme)
    prediction = ner.test(reference)
    if report_path:
        result = write_report(reference, prediction, report_path)
        print(f"Report saved to {report_path}")
    else:
        result = evaluate(reference, prediction)
    print(result.dump())
    return result


def main(argv=None):
    parser = argparse.ArgumentParser(description="Averaged perceptron for NER")
    subparsers = parser.add_subparsers(dest="command", required=True)

    train_parser = subparsers.add_parser("train", help="Train the perceptron model")
    train_parser.add_argument("--input", required=True, help="Path to the training data file")
    train_parser.add_argument("--dev", help="Path to the development data file, evaluated after every epoch")
    train_parser.add_argument("--model", required=True, help="Path to save the trained model")
    train_parser.add_argument("--epochs", type=int, default=DEFAULT_EPOCHS, help="Number of training epochs")
    train_parser.add_argument("--lr", type=float, default=DEFAULT_LEARNING_RATE, help="Learning rate")
    train_parser.add_argument("--seed", type=int, default=None, help="Seed of the per epoch shuffle")
    train_parser.add_argument("--no_shuffle", action="store_true", help="Keep the corpus order in every epoch")
    train_parser.add_argument("--format", choices=["conll", "bracket"], default="conll",
                              help="Corpus format (CoNLL columns or <START:TYPE> ... <END> lines)")
    train_parser.add_argument("--scheme", choices=["BIO", "BILOU"], default="BIO",
                              help="Position markup of bracket corpora")
    train_parser.add_argument("--wandb_mode", choices=["online", "offline", "disabled"], default=None,
                              help="wandb run mode")

    predict_parser = subparsers.add_parser("predict", help="Predict tags using a trained model")
    predict_parser.add_argument("--model", required=True, help="Path to the trained model file")
    predict_parser.add_argument("--input", required=True, help="Path to the input file for prediction (words per line)")
    predict_parser.add_argument("--output", required=True, help="Path to save the prediction results")

    eval_parser = subparsers.add_parser("evaluate", help="Evaluate a trained model against labeled data")
    eval_parser.add_argument("--model", required=True, help="Path to the trained model file")
    eval_parser.add_argument("--input", required=True, help="Path to the labeled data file")
    eval_parser.add_argument("--format", choices=["conll", "bracket"], default="conll", help="Corpus format")
    eval_parser.add_argument("--scheme", choices=["BIO", "BILOU"], default="BIO",
                             help="Position markup of bracket corpora")
    eval_parser.add_argument("--report", help="Path to write the per token diff report")

    args = parser.parse_args(argv)

    if args.command == "train":
        train(args.input, args.model, dev_file=args.dev, num_epochs=args.epochs, learning_rate=args.lr,
              seed=args.seed, shuffle=not args.no_shuffle, data_format=args.format, scheme=args.scheme,
              wandb_mode=args.wandb_mode)
    elif args.command == "predict":
        predict(args.model, args.input, args.output)
    elif args.command == "evaluate":
        evaluate_model(args.model, args.input, report_path=args.report, data_format=args.format,
                       scheme=args.scheme)


if __name__ == "__main__":
    main()
