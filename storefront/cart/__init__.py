"""ユーザーごとのショッピングカート"""
