"""エンジン層 - 読み込み・解析・検証・パイプライン"""
