"""PureTranslate : traduction juridique fr/en <-> ar à pureté d'écriture garantie."""
