import unittest

from feature_engine.name_similarity import (
    are_names_similar,
    calculate_word_overlap,
    extract_meaningful_words,
    find_best_match,
)


class MeaningfulWordsTests(unittest.TestCase):
    def test_drops_stopwords_punctuation_and_single_characters(self) -> None:
        words = extract_meaningful_words("Add a Movie to the Watch-List (v2) & X")
        self.assertEqual(words, {"add", "movie", "watch", "list", "v2"})


class WordOverlapTests(unittest.TestCase):
    def test_identical_names(self) -> None:
        self.assertEqual(calculate_word_overlap("User Login", "User Login"), 1.0)

    def test_single_shared_generic_word_is_not_enough(self) -> None:
        self.assertEqual(calculate_word_overlap("User Management", "Content Management"), 0.0)

    def test_single_word_names(self) -> None:
        self.assertEqual(calculate_word_overlap("Login", "Login"), 1.0)
        self.assertEqual(calculate_word_overlap("Login", "Playback"), 0.0)

    def test_jaccard_when_two_words_shared(self) -> None:
        overlap = calculate_word_overlap("Video Playback Controls", "Video Playback Speed")
        self.assertAlmostEqual(overlap, 2 / 4)

    def test_empty_names(self) -> None:
        self.assertEqual(calculate_word_overlap("", "Login"), 0.0)
        self.assertEqual(calculate_word_overlap("the of", "Login"), 0.0)


class NameSimilarityTests(unittest.TestCase):
    def test_exact_and_substring_matches(self) -> None:
        self.assertTrue(are_names_similar("User Login", "user login"))
        self.assertTrue(are_names_similar("Login", "User Login"))

    def test_overlap_threshold(self) -> None:
        self.assertTrue(are_names_similar("Video Playback Controls", "Video Playback Speed", threshold=0.5))
        self.assertFalse(are_names_similar("Video Playback Controls", "Video Playback Speed", threshold=0.6))
        self.assertFalse(are_names_similar("User Management", "Content Management"))

    def test_find_best_match_prefers_exact(self) -> None:
        names = {"Video Playback": "f-1", "Video Playback Controls": "f-2"}
        self.assertEqual(find_best_match("video playback", names), "f-1")

    def test_find_best_match_by_overlap_or_none(self) -> None:
        names = {"Video Playback Controls": "f-2", "User Login": "f-3"}
        self.assertEqual(find_best_match("Playback Controls Video Speed", names), "f-2")
        self.assertIsNone(find_best_match("Payment Processing", names))


if __name__ == "__main__":
    unittest.main()
