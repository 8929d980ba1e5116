import os
import shutil
from pathlib import Path

from huggingface_hub import hf_hub_download
from eowkit import config

# ONNX export + BERT vocabulary of a small cross-encoder
RERANKER_REPO = os.environ.get("EOWKIT_RERANKER_REPO", "cross-encoder/ms-marco-MiniLM-L-6-v2")
ARTIFACTS = {
    "onnx/model.onnx": "model.onnx",
    "vocab.txt": "vocab.txt",
}


def main() -> None:
    os.environ["HF_HUB_OFFLINE"] = "0"  # allow downloads just for this script

    target = Path(os.environ.get("EOWKIT_RERANKER_DIR", str(config.RERANKER_DIR))).resolve()
    target.mkdir(parents=True, exist_ok=True)
    print(f"Reranker directory: {target}")

    for remote, local in ARTIFACTS.items():
        print(f"\nDownloading {RERANKER_REPO}:{remote}")
        cached = hf_hub_download(repo_id=RERANKER_REPO, filename=remote)
        dest = target / local
        shutil.copyfile(cached, dest)
        print(f"  copied to {dest} ({dest.stat().st_size} bytes)")

    print("\nSet EOWKIT_RERANK=1 to enable reranking with these files.")


if __name__ == "__main__":
    main()
