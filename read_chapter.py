"""
Koine Reader: Greek New Testament reader
-----------------------------------------

Command-line entry point. Loads a chapter, optionally analyzes and saves
a word, and lists or exports the signed-in reader's flashcards.

    python read_chapter.py John 1 --word "λόγος," --verse 1 --save --login
"""

import argparse
import asyncio
import sys

from koine_reader import ReaderApp
from koine_reader.services import ChapterStatus, KoineReaderError, SelectionStatus
from koine_reader.utils import setup_logger


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Read a Koine Greek chapter and collect flashcards.")
    parser.add_argument("book", help='Book name, e.g. "John" or "1 Corinthians"')
    parser.add_argument("chapter", type=int, help="Chapter number")
    parser.add_argument("--word", help="Word to analyze (as printed in the chapter)")
    parser.add_argument("--verse", type=int, default=1, help="Verse the word appears in")
    parser.add_argument("--save", action="store_true", help="Save the analyzed word as a flashcard")
    parser.add_argument("--login", action="store_true", help="Sign in before anything else")
    parser.add_argument("--list", action="store_true", help="List your flashcards")
    parser.add_argument("--export-csv", metavar="PATH", help="Export flashcards to a CSV file")
    parser.add_argument("--export-apkg", metavar="PATH", help="Export flashcards to an Anki package")
    return parser.parse_args(argv)


def print_chapter(snapshot) -> None:
    data = snapshot.chapter_data
    print(f"\n=== {data.book} {data.chapter} ===\n")
    for verse in data.verses:
        print(f"{verse.verse:>3}  {verse.greek}")
        print(f"     {verse.english}\n")


def print_analysis(snapshot) -> None:
    analysis = snapshot.analysis
    print(f"\n[WORD] {analysis.original} ({analysis.romanization})")
    print(f"       {analysis.gloss}")
    print(f"       Lemma: {analysis.lemma}  |  {analysis.part_of_speech}")
    print(f"       Parsing: {analysis.parsing}")
    print(f"       {snapshot.selection.verse_reference}")


async def main(argv=None) -> bool:
    """Main entry point."""
    args = parse_args(argv)
    setup_logger()

    app = await ReaderApp.create(book=args.book, chapter=args.chapter)
    async with app:
        session = app.session
        await session.start()

        snapshot = session.snapshot
        if snapshot.chapter_status is not ChapterStatus.CHAPTER_READY:
            print(f"[ERROR] {snapshot.chapter_error}")
            return False
        print_chapter(snapshot)

        if args.login and snapshot.identity is None:
            try:
                await session.sign_in()
            except KoineReaderError as e:
                print(f"[ERROR] {e}")
                return False

        if args.word:
            await session.select_word(args.word, args.verse)
            snapshot = session.snapshot
            if snapshot.selection_status is SelectionStatus.NO_SELECTION:
                print(f"[ERROR] Nothing to analyze in {args.word!r} at verse {args.verse}.")
                return False
            if snapshot.selection_status is SelectionStatus.ANALYSIS_FAILED:
                print(f"[ERROR] {snapshot.analysis_error}")
                return False
            print_analysis(snapshot)

            if args.save:
                await session.save()
                # A signed-out save only starts sign-in
                if session.snapshot.selection_status is SelectionStatus.ANALYSIS_READY and session.snapshot.save_error is None:
                    await session.save()
                snapshot = session.snapshot
                if snapshot.selection_status is not SelectionStatus.SAVED:
                    print(f"[ERROR] {snapshot.save_error or 'Sign in to save flashcards.'}")
                    return False
                print(f"[OK] Saved flashcard {snapshot.saved_card.id}")

        if args.list or args.export_csv or args.export_apkg:
            identity = session.snapshot.identity
            if identity is None:
                print("[ERROR] Sign in (--login) to see your flashcards.")
                return False
            try:
                if args.list:
                    cards = await app.flashcards.list_for(identity)
                    print(f"\n{len(cards)} flashcard(s) for {identity.display_name or identity.uid}:")
                    for card in cards:
                        print(f"  {card.id}  {card.original:<16} {card.gloss:<30} {card.verse_reference}")
                if args.export_csv:
                    count = await app.flashcards.export_csv(identity, args.export_csv)
                    print(f"[OK] Exported {count} flashcard(s) to {args.export_csv}")
                if args.export_apkg:
                    count = await app.flashcards.export_apkg(identity, args.export_apkg)
                    print(f"[OK] Exported {count} note(s) to {args.export_apkg}")
            except KoineReaderError as e:
                print(f"[ERROR] {e}")
                return False

    return True


if __name__ == "__main__":
    try:
        success = asyncio.run(main())
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\n[!] Aborted by user.")
        sys.exit(1)
